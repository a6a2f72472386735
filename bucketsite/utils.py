from __future__ import annotations

import datetime as dt
import shutil
from pathlib import Path

from .errors import ConfigError, OutputIOError

TRUE_WORDS = {"1", "true", "yes", "on"}
FALSE_WORDS = {"0", "false", "no", "off"}


def coerce_bool(value: object, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    word = str(value).strip().lower()
    if word in TRUE_WORDS:
        return True
    if word in FALSE_WORDS:
        return False
    raise ConfigError(f"{field} must be a boolean, got {value!r}")


def coerce_int(value: object, default: int, field: str) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"{field} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigError(f"{field} must be an integer, got {value!r}") from None


def split_list(value: object) -> list[str]:
    """Accept a YAML list or a comma separated string; drop blanks."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value if item is not None]
    else:
        items = [item.strip() for item in str(value).split(",")]
    return [item for item in items if item]


def absolute_url(base: str, path: str) -> str:
    base = base.rstrip("/")
    path = path.lstrip("/")
    if not path:
        return f"{base}/"
    return f"{base}/{path}"


def rfc822_date(value: dt.datetime) -> str:
    return value.strftime("%a, %d %b %Y %H:%M:%S %z")


def rfc3339_date(value: dt.datetime) -> str:
    text = value.isoformat(timespec="seconds")
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def format_date(value: dt.datetime, pattern: str) -> str:
    if pattern.upper() == "RFC3339":
        return rfc3339_date(value)
    return value.strftime(pattern)


def output_path_for(output_dir: Path, url_path: str) -> Path:
    """Map a site URL path (``/tags/rust/``) to its ``index.html`` on disk."""
    relative = url_path.strip("/")
    target = output_dir / relative if relative else output_dir
    if url_path.endswith("/") or not relative:
        target = target / "index.html"
    return target


def remove_file_if_exists(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise OutputIOError(f"failed to remove {path}: {exc}") from exc
    return True


def remove_dir_if_empty(path: Path) -> None:
    try:
        path.rmdir()
    except (FileNotFoundError, OSError):
        return


def remove_tree(path: Path, stop_at: Path) -> None:
    """Delete ``path`` and prune the now-empty parents up to ``stop_at``."""
    if path.exists():
        try:
            shutil.rmtree(path)
        except OSError as exc:
            raise OutputIOError(f"failed to remove {path}: {exc}") from exc
    parent = path.parent
    stop = stop_at.resolve()
    while parent.exists() and parent.resolve() != stop and stop in parent.resolve().parents:
        if any(parent.iterdir()):
            break
        remove_dir_if_empty(parent)
        parent = parent.parent


def clean_output_dir(output_dir: Path, project_root: Path) -> None:
    if not output_dir.exists():
        return
    output_resolved = output_dir.resolve()
    root_resolved = project_root.resolve()
    if output_resolved == root_resolved:
        raise OutputIOError("Refusing to clean project root.")
    if not output_resolved.is_relative_to(root_resolved):
        raise OutputIOError("Refusing to clean output directory outside project root.")
    shutil.rmtree(output_dir)
