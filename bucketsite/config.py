from __future__ import annotations

import datetime as dt
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional
from urllib.parse import urlparse

try:
    import tomllib as toml
except ImportError:
    import tomli as toml

import yaml

from .errors import ConfigError
from .utils import coerce_bool, coerce_int, split_list

CONFIG_CANDIDATES = ("site.toml", "site.yaml", "site.yml", "site.json")
OFFSET_RE = re.compile(r"^(?P<sign>[+-])(?P<hours>\d{1,2})(?::(?P<minutes>\d{2}))?(?::(?P<seconds>\d{2}))?$")

ENGLISH_STOPWORDS = (
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "from", "has", "have", "in",
    "is", "it", "of", "on", "or", "that", "the", "to", "was", "were", "will", "with", "you",
    "your", "about", "into", "more", "can", "do", "just", "like", "not", "only", "out", "some",
    "than", "then", "there", "this", "up", "what", "when", "who", "why",
)
GREEK_STOPWORDS = (
    "και", "να", "σε", "το", "η", "ο", "οι", "τα", "για", "με", "που", "ως", "από", "αυτο",
    "αυτά", "αυτή", "αυτό", "αυτές", "αυτοί", "αυτών", "είναι", "στο", "στη", "στην", "στον",
    "τους", "τις", "των", "μια", "μιας", "μιαν", "μου", "σου", "του", "της", "μας", "σας", "αν",
    "θα", "δε", "δεν", "πως", "ότι", "όπως", "όταν", "όσο",
)

KNOWN_KEYS = {
    "title",
    "base_url",
    "homepage_posts",
    "date_format",
    "paginate_tags",
    "default_timezone",
    "feed_limit",
    "build_workers",
    "output",
    "rss_tags",
    "search",
}


def load_config(path: Path) -> dict:
    if not path.exists():
        return {}
    suffix = path.suffix.lower()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read config file {path}: {exc}") from exc
    if suffix == ".toml":
        try:
            data = toml.loads(text)
        except toml.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in config file {path}: {exc}") from exc
    elif suffix in {".yml", ".yaml"}:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in config file {path}: {exc}") from exc
        if data is None:
            return {}
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a mapping: {path}")
    return data


def find_config(root: Path) -> Optional[Path]:
    for name in CONFIG_CANDIDATES:
        candidate = root / name
        if candidate.exists():
            return candidate
    return None


def parse_timezone(value: str) -> dt.timezone:
    text = str(value).strip()
    if text.upper() in {"UTC", "Z"}:
        return dt.timezone.utc
    match = OFFSET_RE.match(text)
    if not match:
        raise ValueError(f"offset '{value}' must look like +HH:MM")
    sign = -1 if match.group("sign") == "-" else 1
    delta = dt.timedelta(
        hours=int(match.group("hours")),
        minutes=int(match.group("minutes") or 0),
        seconds=int(match.group("seconds") or 0),
    )
    if delta >= dt.timedelta(hours=24):
        raise ValueError(f"offset '{value}' is out of range")
    return dt.timezone(sign * delta)


@dataclass(frozen=True)
class SearchLanguage:
    id: str
    name: Optional[str] = None
    stopwords: tuple[str, ...] = ()


def default_search_languages() -> tuple[SearchLanguage, ...]:
    return (
        SearchLanguage(id="en", name="English", stopwords=ENGLISH_STOPWORDS),
        SearchLanguage(id="el", name="Greek", stopwords=GREEK_STOPWORDS),
    )


@dataclass(frozen=True)
class SearchSettings:
    asset_path: str = "assets/search/search-index.json"
    default_language: str = "en"
    languages: tuple[SearchLanguage, ...] = field(default_factory=default_search_languages)
    payload_fields: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: object, origin: Path) -> "SearchSettings":
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"{origin}: search must be a mapping")
        defaults = cls()
        languages = defaults.languages
        if "languages" in data:
            raw_languages = data.get("languages") or []
            if not isinstance(raw_languages, list):
                raise ConfigError(f"{origin}: search.languages must be a list")
            parsed = []
            for item in raw_languages:
                if not isinstance(item, dict):
                    raise ConfigError(f"{origin}: search.languages entries must be mappings")
                parsed.append(
                    SearchLanguage(
                        id=str(item.get("id") or ""),
                        name=item.get("name"),
                        stopwords=tuple(str(word) for word in item.get("stopwords") or ()),
                    )
                )
            languages = tuple(parsed)
        payload_fields = data.get("payload_fields") or []
        if not isinstance(payload_fields, list):
            raise ConfigError(f"{origin}: search.payload_fields must be a list")
        settings = cls(
            asset_path=str(data.get("asset_path", defaults.asset_path)),
            default_language=str(data.get("default_language", defaults.default_language)),
            languages=languages,
            payload_fields=tuple(str(item) for item in payload_fields),
        )
        settings.validate(origin)
        return settings

    def validate(self, origin: Path) -> None:
        if not self.asset_path.strip():
            raise ConfigError(f"{origin}: search.asset_path must not be empty")
        if not self.languages:
            raise ConfigError(f"{origin}: search.languages must define at least one language")
        seen = set()
        for language in self.languages:
            key = language.id.strip().lower()
            if not key:
                raise ConfigError(f"{origin}: search language ids must not be empty")
            if key in seen:
                raise ConfigError(f"{origin}: duplicate language id '{language.id}' in search.languages")
            seen.add(key)
        default = self.default_language.strip().lower()
        if not default:
            raise ConfigError(f"{origin}: search.default_language must not be empty")
        if default not in seen:
            raise ConfigError(
                f"{origin}: search.default_language '{self.default_language}' not found in search.languages"
            )
        payload_seen = set()
        for name in self.payload_fields:
            stripped = name.strip()
            if not stripped:
                raise ConfigError(f"{origin}: search.payload_fields entries must not be empty")
            if stripped != name:
                raise ConfigError(
                    f"{origin}: search.payload_fields '{name}' must not contain leading or trailing whitespace"
                )
            if any(ch.isspace() for ch in stripped):
                raise ConfigError(f"{origin}: search.payload_fields '{name}' must not contain internal whitespace")
            if stripped in payload_seen:
                raise ConfigError(f"{origin}: duplicate entry '{name}' in search.payload_fields")
            payload_seen.add(stripped)


@dataclass(frozen=True)
class Settings:
    """Validated site settings, consumed read-only by every render stage."""

    title: Optional[str] = None
    base_url: str = "https://example.com"
    homepage_posts: int = 5
    date_format: str = "%Y-%m-%d"
    paginate_tags: bool = True
    default_timezone: str = "+00:00"
    feed_limit: int = 50
    build_workers: int = 0
    output: str = "html"
    rss_tags: tuple[str, ...] = ()
    search: SearchSettings = field(default_factory=SearchSettings)
    extra: Mapping[str, object] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_mapping(cls, data: Mapping[str, object], origin: Path) -> "Settings":
        defaults = cls()
        title = data.get("title")
        settings = cls(
            title=str(title) if title is not None else None,
            base_url=str(data.get("base_url", defaults.base_url)),
            homepage_posts=coerce_int(data.get("homepage_posts"), defaults.homepage_posts, f"{origin}: homepage_posts"),
            date_format=str(data.get("date_format", defaults.date_format)),
            paginate_tags=(
                coerce_bool(data["paginate_tags"], f"{origin}: paginate_tags")
                if "paginate_tags" in data
                else defaults.paginate_tags
            ),
            default_timezone=str(data.get("default_timezone", defaults.default_timezone)),
            feed_limit=coerce_int(data.get("feed_limit"), defaults.feed_limit, f"{origin}: feed_limit"),
            build_workers=coerce_int(data.get("build_workers"), defaults.build_workers, f"{origin}: build_workers"),
            output=str(data.get("output", defaults.output)),
            rss_tags=tuple(sorted(set(split_list(data.get("rss_tags"))))),
            search=SearchSettings.from_mapping(data.get("search"), origin),
            extra=MappingProxyType({k: v for k, v in data.items() if k not in KNOWN_KEYS}),
        )
        settings.validate(origin)
        return settings

    @classmethod
    def load(cls, path: Path) -> "Settings":
        return cls.from_mapping(load_config(path), path)

    def validate(self, origin: Path) -> None:
        if not self.base_url.strip():
            raise ConfigError(f"{origin}: base_url must not be empty")
        parsed = urlparse(self.base_url)
        if parsed.scheme not in {"http", "https"}:
            raise ConfigError(f"{origin}: base_url must use http or https")
        if not parsed.netloc:
            raise ConfigError(f"{origin}: base_url must be an absolute URL")
        if self.homepage_posts <= 0:
            raise ConfigError(f"{origin}: homepage_posts must be greater than zero")
        if self.feed_limit <= 0:
            raise ConfigError(f"{origin}: feed_limit must be greater than zero")
        if not self.date_format.strip():
            raise ConfigError(f"{origin}: date_format must not be empty")
        if self.date_format.upper() != "RFC3339":
            try:
                dt.datetime(2000, 1, 2, 3, 4, 5).strftime(self.date_format)
            except ValueError as exc:
                raise ConfigError(f"{origin}: date_format '{self.date_format}' is invalid: {exc}") from exc
        try:
            parse_timezone(self.default_timezone)
        except ValueError as exc:
            raise ConfigError(
                f"{origin}: default_timezone '{self.default_timezone}' is invalid (expected offset like +00:00)"
            ) from exc
        if not self.output.strip():
            raise ConfigError(f"{origin}: output must not be empty")

    def default_offset(self) -> dt.timezone:
        return parse_timezone(self.default_timezone)

    def template_view(self) -> dict:
        """Plain mapping exposed to templates as ``config``."""
        view = dict(self.extra)
        view.update(
            {
                "title": self.title,
                "base_url": self.base_url,
                "homepage_posts": self.homepage_posts,
                "date_format": self.date_format,
                "paginate_tags": self.paginate_tags,
                "default_timezone": self.default_timezone,
                "feed_limit": self.feed_limit,
                "rss_tags": list(self.rss_tags),
                "search": {
                    "asset_path": self.search.asset_path,
                    "default_language": self.search.default_language,
                    "languages": [
                        {"id": lang.id, "name": lang.name, "stopwords": list(lang.stopwords)}
                        for lang in self.search.languages
                    ],
                    "payload_fields": list(self.search.payload_fields),
                },
            }
        )
        return view
