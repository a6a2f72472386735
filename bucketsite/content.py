"""Post discovery and modelling.

A post is a directory holding exactly one main content file (Markdown or
HTML) that starts with a YAML front matter block. Everything about a post is
derived from that directory on every pass; only its digest and rendered body
are persisted, in the digest store.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import logging
import mimetypes
import re
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Mapping, Optional, Union

import langcodes
import yaml
from langdetect import DetectorFactory, detect_langs
from langdetect.lang_detect_exception import LangDetectException

from .config import Settings, parse_timezone
from .errors import AttachmentMissingError, DiscoveryError, FrontMatterError
from .render import excerpt_from_html, render_markdown, to_plain_text
from .utils import split_list

LOGGER = logging.getLogger(__name__)

# langdetect is randomised; a fixed seed keeps digests and outputs stable.
DetectorFactory.seed = 0

MAIN_EXTENSIONS = {".md": "md", ".html": "html"}
IGNORE_MARKER = ".bucketignore"
POST_TYPE_RE = re.compile(r"^[a-z0-9_-]+$")
NAIVE_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_HELP = "date must be RFC3339, 'YYYY-MM-DD HH:MM:SS', or 'YYYY-MM-DD HH:MM:SS ±HHMM/±HH:MM'"
RESERVED_KEYS = {"title", "slug", "date", "tags", "type", "abstract", "language", "attached"}
MIN_DETECT_CHARS = 24
DETECT_CONFIDENCE = 0.9

FrontValue = Union[str, int, float, bool, None, list, dict]


class FrontMatterLoader(yaml.SafeLoader):
    """Safe loader that keeps timestamps as plain strings."""


FrontMatterLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


@dataclass(frozen=True)
class Attachment:
    path: str
    size: int
    mime_type: str


@dataclass(frozen=True)
class Post:
    key: str
    slug: str
    date: dt.datetime
    source_dir: Path
    content_path: Path
    source_format: str
    body_source: str
    digest: str
    tags: tuple[str, ...] = ()
    title: Optional[str] = None
    abstract: Optional[str] = None
    post_type: Optional[str] = None
    language: str = "en"
    attachments: tuple[Attachment, ...] = ()
    extra: Mapping[str, FrontValue] = field(default_factory=lambda: MappingProxyType({}))
    body_html: str = ""
    excerpt: str = ""
    search_text: str = ""

    @property
    def permalink(self) -> str:
        return build_permalink(self.date, self.slug)

    @property
    def cursor(self) -> str:
        return f"{int(self.date.timestamp())}-{self.slug}"

    @property
    def template_name(self) -> str:
        if self.post_type:
            return f"post-{self.post_type}.html"
        return "post.html"

    @property
    def display_title(self) -> str:
        return self.title or self.slug

    @property
    def attached_paths(self) -> list[str]:
        return [attachment.path for attachment in self.attachments]

    def with_body(self, body_html: str, excerpt: str, search_text: str) -> "Post":
        return replace(self, body_html=body_html, excerpt=excerpt, search_text=search_text)


def sort_key(post: Post) -> tuple[dt.datetime, str]:
    return (post.date, post.slug)


def newest_first(posts: list[Post]) -> list[Post]:
    """Date descending, ties broken by slug ascending."""
    ordered = sorted(posts, key=lambda p: p.slug)
    return sorted(ordered, key=lambda p: p.date, reverse=True)


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower())
    return slug.strip("-")


def build_permalink(date: dt.datetime, slug: str) -> str:
    return f"/{date.year:04d}/{date.month:02d}/{date.day:02d}/{slug}/"


def parse_front_matter(text: str, origin: Path) -> tuple[dict, str]:
    clean_text = text.lstrip("﻿")
    lines = clean_text.splitlines()
    if not lines or lines[0].strip() != "---":
        raise FrontMatterError(f"{origin}: missing front matter (file must start with ---)")

    end = None
    for i in range(1, len(lines)):
        if lines[i].strip() == "---":
            end = i
            break
    if end is None:
        raise FrontMatterError(f"{origin}: front matter not terminated with ---")

    raw = "\n".join(lines[1:end])
    try:
        meta = yaml.load(raw, Loader=FrontMatterLoader) if raw.strip() else {}
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" (line {mark.line + 2})" if mark is not None else ""
        raise FrontMatterError(f"{origin}: invalid front matter{where}: {exc}") from exc
    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        raise FrontMatterError(f"{origin}: front matter must be a mapping")
    for key in meta:
        if not isinstance(key, str):
            raise FrontMatterError(f"{origin}: front matter key {key!r} is not a string")
    body = "\n".join(lines[end + 1 :])
    return meta, body


def parse_post_date(value: object, default_offset: dt.tzinfo, origin: Path) -> dt.datetime:
    if not isinstance(value, str) or not value.strip():
        raise FrontMatterError(f"{origin}: {DATE_HELP}")
    text = value.strip()

    iso_text = text[:-1] + "+00:00" if text[-1:] in {"Z", "z"} else text
    try:
        parsed = dt.datetime.fromisoformat(iso_text.replace("t", "T"))
    except ValueError:
        parsed = None
    if parsed is not None and parsed.tzinfo is not None and len(text) > 10:
        return parsed

    try:
        return dt.datetime.strptime(text, NAIVE_FORMAT).replace(tzinfo=default_offset)
    except ValueError:
        pass

    main, _, offset_part = text.rpartition(" ")
    if main:
        try:
            naive = dt.datetime.strptime(main, NAIVE_FORMAT)
            offset = parse_timezone(_normalize_offset(offset_part))
        except ValueError:
            pass
        else:
            return naive.replace(tzinfo=offset)

    raise FrontMatterError(f"{origin}: {DATE_HELP}")


def _normalize_offset(value: str) -> str:
    if len(value) == 5 and value[0] in "+-" and value[1:].isdigit():
        return f"{value[:3]}:{value[3:]}"
    return value


def normalize_post_type(value: object, origin: Path) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip().lower()
    if not text:
        return None
    if not POST_TYPE_RE.match(text):
        raise FrontMatterError(f"{origin}: type may only contain lowercase letters, digits, '-' or '_'")
    return text


def sanitize_language(value: str) -> str:
    return value.strip().replace("_", "-").lower()


def language_aliases(language_id: str) -> list[str]:
    """ISO 639-1 and 639-3 codes naming the same language as ``language_id``."""
    primary = language_id.split("-", 1)[0]
    if len(primary) not in (2, 3):
        return []
    try:
        language = langcodes.Language.get(primary)
    except ValueError:
        return []
    if not language.language or not language.is_valid():
        return []
    aliases = [language.language.lower()]
    try:
        aliases.append(language.to_alpha3().lower())
    except LookupError:
        pass
    return aliases


@lru_cache(maxsize=32)
def _language_lookup(ids: tuple[str, ...]) -> dict[str, str]:
    lookup = {}
    for language_id in ids:
        canonical = sanitize_language(language_id)
        if not canonical:
            continue
        lookup[canonical] = language_id
        for alias in language_aliases(canonical):
            lookup.setdefault(alias, language_id)
    return lookup


def canonical_language(value: Optional[str], settings: Settings) -> str:
    lookup = _language_lookup(tuple(lang.id for lang in settings.search.languages))
    default = lookup.get(sanitize_language(settings.search.default_language), settings.search.default_language)
    if value is None:
        return default
    text = sanitize_language(str(value))
    if not text:
        return default
    if text in lookup:
        return lookup[text]
    primary = text.split("-", 1)[0]
    return lookup.get(primary, text)


def guess_language(text: str) -> Optional[str]:
    """Best guess for the language of ``text``, or None when too short or unsure."""
    trimmed = text.strip()
    if len(trimmed) < MIN_DETECT_CHARS:
        return None
    try:
        candidates = detect_langs(trimmed)
    except LangDetectException:
        return None
    if not candidates or candidates[0].prob < DETECT_CONFIDENCE:
        return None
    return candidates[0].lang.lower()


def resolve_language(value: Optional[str], body_text: str, settings: Settings) -> str:
    if value is not None and sanitize_language(value):
        return canonical_language(value, settings)
    guessed = guess_language(body_text)
    if guessed is not None:
        return canonical_language(guessed, settings)
    return canonical_language(None, settings)


def _string_or_none(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _freeze_extra(meta: dict) -> Mapping[str, FrontValue]:
    return MappingProxyType({key: value for key, value in meta.items() if key not in RESERVED_KEYS})


def resolve_attachments(source_dir: Path, names: list[str], origin: Path) -> tuple[Attachment, ...]:
    attachments = {}
    for name in names:
        pure = PurePosixPath(name.replace("\\", "/"))
        if pure.is_absolute() or Path(name).is_absolute():
            raise FrontMatterError(f"{origin}: asset path must be relative: {name}")
        if ".." in pure.parts:
            raise FrontMatterError(f"{origin}: asset path must stay inside the post directory: {name}")
        relative = "/".join(part for part in pure.parts if part != ".")
        path = source_dir / relative
        if not path.is_file():
            raise AttachmentMissingError(source_dir, relative)
        mime_type, _ = mimetypes.guess_type(path.name)
        attachments[relative] = Attachment(
            path=relative,
            size=path.stat().st_size,
            mime_type=mime_type or "application/octet-stream",
        )
    return tuple(attachments[key] for key in sorted(attachments))


def read_source_bytes(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise DiscoveryError(f"failed to read {path}: {exc}") from exc


def compute_post_digest(content_path: Path, source_dir: Path, attachments: tuple[Attachment, ...]) -> str:
    digest = hashlib.sha256()
    digest.update(read_source_bytes(content_path))
    for attachment in attachments:
        digest.update(b"\0")
        digest.update(attachment.path.encode("utf-8"))
        digest.update(b"\0")
        digest.update(str(attachment.size).encode("ascii"))
        digest.update(b"\0")
        digest.update(hashlib.sha256(read_source_bytes(source_dir / attachment.path)).digest())
    return digest.hexdigest()


def find_main_files(directory: Path) -> list[Path]:
    return sorted(
        entry
        for entry in directory.iterdir()
        if entry.is_file() and entry.suffix.lower() in MAIN_EXTENSIONS
    )


def load_post(directory: Path, posts_root: Path, settings: Settings, content_path: Path) -> Post:
    try:
        raw = content_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise DiscoveryError(f"failed to read {content_path}: {exc}") from exc
    meta, body = parse_front_matter(raw, content_path)

    if "date" not in meta or meta.get("date") is None:
        raise FrontMatterError(f"{content_path}: date is required")
    date = parse_post_date(meta["date"], settings.default_offset(), content_path)

    explicit_slug = _string_or_none(meta.get("slug"))
    slug = slugify(explicit_slug if explicit_slug is not None else directory.name)
    if not slug:
        raise DiscoveryError(f"{directory}: slug cannot be empty")

    attachments = resolve_attachments(directory, split_list(meta.get("attached")), content_path)

    return Post(
        key=directory.relative_to(posts_root).as_posix(),
        slug=slug,
        date=date,
        source_dir=directory,
        content_path=content_path,
        source_format=MAIN_EXTENSIONS[content_path.suffix.lower()],
        body_source=body,
        digest=compute_post_digest(content_path, directory, attachments),
        tags=tuple(dict.fromkeys(split_list(meta.get("tags")))),
        title=_string_or_none(meta.get("title")),
        abstract=_string_or_none(meta.get("abstract")),
        post_type=normalize_post_type(meta.get("type"), content_path),
        language=resolve_language(_string_or_none(meta.get("language")), to_plain_text(body), settings),
        attachments=attachments,
        extra=_freeze_extra(meta),
    )


def render_post_body(post: Post) -> Post:
    """Convert the post body; pure apart from the Markdown converter."""
    if post.source_format == "md":
        rendered = render_markdown(post.body_source)
        body_html, excerpt = rendered.html, rendered.excerpt
    else:
        body_html = post.body_source.strip()
        excerpt = excerpt_from_html(body_html)
    return post.with_body(body_html, excerpt, to_plain_text(body_html))


def discover_posts(posts_dir: Path, settings: Settings) -> list[Post]:
    if not posts_dir.is_dir():
        raise DiscoveryError(f"posts directory {posts_dir} does not exist")

    posts: list[Post] = []
    pending = [posts_dir]
    while pending:
        directory = pending.pop()
        if (directory / IGNORE_MARKER).exists():
            LOGGER.debug("Skipping ignored directory %s", directory)
            continue
        main_files = find_main_files(directory)
        if len(main_files) > 1:
            names = ", ".join(path.name for path in main_files)
            raise DiscoveryError(
                f"{directory}: expected exactly one main content file, found {len(main_files)} ({names})"
            )
        if len(main_files) == 1 and directory != posts_dir:
            posts.append(load_post(directory, posts_dir, settings, main_files[0]))
            continue
        if len(main_files) == 1:
            raise DiscoveryError(f"{directory}: posts root cannot itself be a post; move it into a directory")
        subdirs = sorted((entry for entry in directory.iterdir() if entry.is_dir()), reverse=True)
        if not subdirs and directory != posts_dir:
            raise DiscoveryError(f"{directory}: no main content file (.md or .html) found")
        pending.extend(subdirs)

    check_permalink_collisions(posts)
    posts.sort(key=sort_key)
    return posts


def check_permalink_collisions(posts: list[Post]) -> None:
    seen: dict[str, Post] = {}
    for post in posts:
        other = seen.get(post.permalink)
        if other is not None:
            raise DiscoveryError(
                f"{post.source_dir}: slug '{post.slug}' collides with {other.source_dir} at {post.permalink}"
            )
        seen[post.permalink] = post
