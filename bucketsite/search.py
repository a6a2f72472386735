"""Client-side search index.

The index is a single JSON document listing every post with its plain-text
content, the configured languages with their stopwords, and the tag, type and
year facets. It carries no wall-clock data, so identical inputs always produce
identical bytes and the file is only rewritten when its digest changes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from .cache import SEARCH_INDEX_KEY, hash_bytes
from .config import Settings
from .content import Post, canonical_language, newest_first
from .context import BuildContext
from .render import write_bytes
from .utils import absolute_url, format_date, remove_file_if_exists, rfc3339_date

LOGGER = logging.getLogger(__name__)

INDEX_VERSION = 1


@dataclass(frozen=True)
class SearchIndexArtifact:
    bytes: bytes
    digest: str
    document_count: int


def normalize_stopwords(words: tuple[str, ...]) -> list[str]:
    return sorted({word.strip().lower() for word in words if word.strip()})


def search_excerpt(post: Post) -> str:
    if post.abstract:
        return post.abstract
    if post.excerpt.strip():
        return post.excerpt
    return post.display_title


def build_document(post: Post, settings: Settings) -> dict:
    document = {
        "id": post.permalink,
        "title": post.display_title,
        "excerpt": search_excerpt(post),
        "content": post.search_text,
        "permalink": post.permalink,
        "url": absolute_url(settings.base_url, post.permalink),
        "language": canonical_language(post.language, settings),
        "tags": sorted(set(post.tags)),
        "type": post.post_type,
        "date_iso": rfc3339_date(post.date),
        "date_display": format_date(post.date, settings.date_format),
        "timestamp": int(post.date.timestamp()),
    }
    payload = {
        name: post.extra[name]
        for name in settings.search.payload_fields
        if name in post.extra and post.extra[name] is not None
    }
    if payload:
        document["payload"] = payload
    return document


def build_index(settings: Settings, posts: list[Post]) -> SearchIndexArtifact:
    documents = []
    tags: set[str] = set()
    types: set[str] = set()
    years: set[int] = set()
    for post in newest_first(posts):
        documents.append(build_document(post, settings))
        tags.update(post.tags)
        if post.post_type:
            types.add(post.post_type)
        years.add(post.date.year)

    index = {
        "version": INDEX_VERSION,
        "default_language": canonical_language(None, settings),
        "documents": documents,
        "languages": [
            {"id": lang.id, "name": lang.name, "stopwords": normalize_stopwords(lang.stopwords)}
            for lang in settings.search.languages
        ],
        "facets": {"tags": sorted(tags), "types": sorted(types), "years": sorted(years)},
    }
    data = json.dumps(index, ensure_ascii=False, separators=(",", ":"), default=str).encode("utf-8")
    return SearchIndexArtifact(bytes=data, digest=hash_bytes(data), document_count=len(documents))


def resolve_asset_path(output_dir: Path, asset_path: str) -> Path:
    return output_dir / asset_path.lstrip("/")


def render_search_index(ctx: BuildContext, posts: list[Post]) -> bool:
    artifact = build_index(ctx.settings, posts)
    ctx.stats.search_documents = artifact.document_count
    path = resolve_asset_path(ctx.output_dir, ctx.settings.search.asset_path)
    previous = ctx.store.get(SEARCH_INDEX_KEY)
    if path.exists() and previous is not None and previous.digest == artifact.digest:
        LOGGER.debug("search index unchanged")
        return False
    old_path = previous.payload.get("path") if previous else None
    if old_path and old_path != ctx.settings.search.asset_path:
        remove_file_if_exists(resolve_asset_path(ctx.output_dir, old_path))
    write_bytes(path, artifact.bytes)
    ctx.store.store(SEARCH_INDEX_KEY, artifact.digest, {"path": ctx.settings.search.asset_path})
    ctx.stats.search_written = True
    LOGGER.info("search index: %d documents", artifact.document_count)
    return True
