from __future__ import annotations

import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

from .cache import SITE_INPUTS_KEY, DigestStore, hash_text, store_path
from .config import Settings, find_config, load_config
from .errors import ConfigError
from .render import write_bytes
from .templates import TemplateSet
from .utils import output_path_for

LOGGER = logging.getLogger(__name__)


class BuildMode(enum.Enum):
    CHANGED = "changed"
    FORCE = "force"


@dataclass(frozen=True)
class RenderPlan:
    posts: bool = False
    static_assets: bool = False
    mode: BuildMode = BuildMode.CHANGED
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.posts and not self.static_assets:
            object.__setattr__(self, "posts", True)
            object.__setattr__(self, "static_assets", True)

    @property
    def force(self) -> bool:
        return self.mode is BuildMode.FORCE


@dataclass
class RenderStats:
    posts_total: int = 0
    posts_rendered: int = 0
    posts_pruned: int = 0
    pages_written: int = 0
    pages_removed: int = 0
    feeds_written: int = 0
    search_documents: int = 0
    search_written: bool = False
    standalone_written: int = 0
    static_copied: int = 0

    @property
    def posts_skipped(self) -> int:
        return self.posts_total - self.posts_rendered

    def summary(self) -> str:
        return (
            f"[SUMMARY] posts rendered: {self.posts_rendered}/{self.posts_total} "
            f"(skipped {self.posts_skipped}, pruned {self.posts_pruned}); "
            f"pages: {self.pages_written} written, {self.pages_removed} removed; "
            f"feeds: {self.feeds_written}; search documents: {self.search_documents}; "
            f"standalone: {self.standalone_written}; static files: {self.static_copied}"
        )


@dataclass(frozen=True)
class BuildContext:
    """Everything a render stage needs, built once per pass."""

    root: Path
    output_dir: Path
    settings: Settings
    templates: TemplateSet
    fingerprint: str
    plan: RenderPlan
    store: DigestStore
    stale: bool
    stats: RenderStats = field(default_factory=RenderStats)

    @property
    def posts_dir(self) -> Path:
        return self.root / "posts"

    @property
    def pages_dir(self) -> Path:
        return self.root / "pages"

    @property
    def static_dir(self) -> Path:
        return self.root / "static"

    @property
    def force(self) -> bool:
        return self.plan.force

    def output_path(self, url_path: str) -> Path:
        return output_path_for(self.output_dir, url_path)

    def write(self, url_path: str, data: bytes) -> Path:
        path = self.output_path(url_path)
        write_bytes(path, data)
        LOGGER.debug("wrote %s", path)
        return path


def site_fingerprint(config_text: str, templates: TemplateSet) -> str:
    return hash_text(config_text + "\0" + templates.fingerprint)


def read_config_text(config_path: Optional[Path]) -> str:
    if config_path is None or not config_path.exists():
        return ""
    try:
        return config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read config file {config_path}: {exc}") from exc


def resolve_config_path(root: Path, config_path: Optional[Path]) -> Optional[Path]:
    if config_path is None:
        return find_config(root)
    if not config_path.is_absolute():
        config_path = root / config_path
    if not config_path.exists():
        raise ConfigError(f"config file {config_path} does not exist")
    return config_path


@contextmanager
def open_build_context(
    root: Path,
    plan: RenderPlan,
    settings: Optional[Settings] = None,
    config_path: Optional[Path] = None,
) -> Iterator[BuildContext]:
    config_path = resolve_config_path(root, config_path)
    config_text = read_config_text(config_path)
    if settings is None:
        origin = config_path or root / "site.toml"
        settings = Settings.from_mapping(load_config(config_path) if config_path else {}, origin)
    templates = TemplateSet.load(root / "templates", settings)
    fingerprint = site_fingerprint(config_text, templates)

    store, was_reset = DigestStore.open_or_reset(store_path(root))
    try:
        if was_reset:
            plan = RenderPlan(plan.posts, plan.static_assets, BuildMode.FORCE, plan.verbose)
        stale = plan.force or store.get_digest(SITE_INPUTS_KEY) != fingerprint
        if stale:
            LOGGER.info("site inputs changed; derived outputs will be regenerated")
        yield BuildContext(
            root=root,
            output_dir=root / settings.output,
            settings=settings,
            templates=templates,
            fingerprint=fingerprint,
            plan=plan,
            store=store,
            stale=stale,
        )
    finally:
        store.close()
