from __future__ import annotations

import datetime as dt
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from jinja2 import Environment, FileSystemLoader, TemplateError, TemplateNotFound, TemplateSyntaxError, select_autoescape

from .config import Settings
from .errors import ConfigError, TemplateRenderError
from .utils import absolute_url, format_date

REQUIRED_TEMPLATES = (
    "post.html",
    "index.html",
    "tag.html",
    "archive_year.html",
    "archive_month.html",
    "rss.xml",
)


def fingerprint_templates(templates_dir: Path) -> str:
    digest = hashlib.sha256()
    for path in sorted(p for p in templates_dir.rglob("*") if p.is_file()):
        digest.update(path.relative_to(templates_dir).as_posix().encode("utf-8"))
        digest.update(b"\0")
        digest.update(path.read_bytes())
        digest.update(b"\0")
    return digest.hexdigest()


@dataclass(frozen=True)
class TemplateSet:
    """Loaded Jinja2 environment plus the fingerprint of its source files."""

    directory: Path
    env: Environment
    fingerprint: str

    @classmethod
    def load(cls, templates_dir: Path, settings: Settings) -> "TemplateSet":
        if not templates_dir.is_dir():
            raise ConfigError(f"templates directory {templates_dir} does not exist")
        missing = [name for name in REQUIRED_TEMPLATES if not (templates_dir / name).is_file()]
        if missing:
            raise ConfigError(f"{templates_dir}: missing required templates: {', '.join(missing)}")

        env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            keep_trailing_newline=True,
        )
        env.globals.update(
            config=settings.template_view(),
            base_url=settings.base_url,
            now=lambda fmt="%Y-%m-%d": dt.datetime.now(dt.timezone.utc).strftime(fmt),
        )
        env.filters["absolute_url"] = lambda path: absolute_url(settings.base_url, str(path))
        env.filters["date_format"] = lambda value, pattern=None: format_date(value, pattern or settings.date_format)
        return cls(directory=templates_dir, env=env, fingerprint=fingerprint_templates(templates_dir))

    def has(self, name: str) -> bool:
        return (self.directory / name).is_file()

    def render(self, name: str, context: Mapping[str, object], scope: str) -> bytes:
        try:
            template = self.env.get_template(name)
            return template.render(**context).encode("utf-8")
        except TemplateSyntaxError as exc:
            raise TemplateRenderError(scope, exc.name or name, exc.message or str(exc), exc.lineno) from exc
        except TemplateNotFound as exc:
            raise TemplateRenderError(scope, name, f"template not found: {exc.name}") from exc
        except TemplateError as exc:
            raise TemplateRenderError(scope, name, str(exc), self._error_line(exc)) from exc
        except (TypeError, ValueError, AttributeError, KeyError) as exc:
            raise TemplateRenderError(scope, name, f"{type(exc).__name__}: {exc}", self._error_line(exc)) from exc

    def render_string(self, source: str, context: Mapping[str, object], scope: str) -> bytes:
        try:
            return self.env.from_string(source).render(**context).encode("utf-8")
        except TemplateSyntaxError as exc:
            raise TemplateRenderError(scope, scope, exc.message or str(exc), exc.lineno) from exc
        except TemplateError as exc:
            raise TemplateRenderError(scope, scope, str(exc)) from exc

    def _error_line(self, exc: BaseException) -> Optional[int]:
        """Line of the innermost traceback frame that belongs to a template file."""
        root = str(self.directory.resolve())
        tb = exc.__traceback__
        line = None
        while tb is not None:
            if str(Path(tb.tb_frame.f_code.co_filename).resolve()).startswith(root):
                line = tb.tb_lineno
            tb = tb.tb_next
        return line
