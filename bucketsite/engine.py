"""Render orchestration.

One pass discovers the posts, renders the ones whose digest moved, then
regenerates only the derived outputs (listings, tags, archives, feeds, sitemap,
search index) that the change set touches. The global ``site:inputs`` marker
is written last, so an interrupted pass is simply redone on the next run.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .cache import (
    SITE_INPUTS_KEY,
    STANDALONE_PREFIX,
    STATIC_KEY,
    DigestStore,
    hash_bytes,
    hash_paths,
    list_files,
    store_path,
)
from .config import Settings
from .content import discover_posts
from .context import BuildContext, BuildMode, RenderPlan, RenderStats, open_build_context
from .errors import ConfigError
from .feeds import render_feeds, render_sitemap
from .pages import ChangeSet, group_posts, render_archives, render_home, render_tags
from .posts import render_posts
from .render import copy_static
from .search import render_search_index
from .utils import clean_output_dir, remove_dir_if_empty, remove_file_if_exists

LOGGER = logging.getLogger(__name__)

__all__ = [
    "BuildContext",
    "BuildMode",
    "RenderPlan",
    "RenderStats",
    "clear_cache",
    "render_site",
]

RESERVED_PAGES = {"index.html", "sitemap.xml", "rss.xml"}


def standalone_url(relative: str) -> str:
    if relative.endswith("/index.html"):
        return "/" + relative[: -len("index.html")]
    return "/" + relative


def render_standalone_pages(ctx: BuildContext) -> list[str]:
    """Render ``pages/**/*.html`` through Jinja2; returns their URLs."""
    pages_dir = ctx.pages_dir
    sources = sorted(p for p in pages_dir.rglob("*.html") if p.is_file()) if pages_dir.is_dir() else []
    store = ctx.store
    urls = []
    live = set()
    for source in sources:
        relative = source.relative_to(pages_dir).as_posix()
        if relative in RESERVED_PAGES:
            raise ConfigError(f"{source}: conflicts with a generated file of the same name")
        url = standalone_url(relative)
        key = f"{STANDALONE_PREFIX}{relative}"
        live.add(key)
        urls.append(url)
        try:
            raw = source.read_bytes()
            text = raw.decode("utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigError(f"failed to read page {source}: {exc}") from exc
        digest = hash_bytes(raw)
        target = ctx.output_dir / relative
        if not ctx.stale and target.exists() and store.get_digest(key) == digest:
            continue
        context = {"page": {"url": url, "path": relative, "absolute_url": url}}
        data = ctx.templates.render_string(text, context, scope=str(source))
        ctx.write("/" + relative, data)
        store.store(key, digest, {"path": relative, "url": url})
        ctx.stats.standalone_written += 1

    for key in store.keys(STANDALONE_PREFIX):
        if key in live:
            continue
        target = ctx.output_dir / key[len(STANDALONE_PREFIX) :]
        remove_file_if_exists(target)
        remove_dir_if_empty(target.parent)
        store.delete(key)
    return urls


def copy_static_assets(ctx: BuildContext) -> int:
    files = list_files(ctx.static_dir)
    digest = hash_paths(files, ctx.static_dir)
    names = sorted(path.relative_to(ctx.static_dir).as_posix() for path in files)
    previous = ctx.store.get(STATIC_KEY)
    missing = any(not (ctx.output_dir / name).exists() for name in names)
    if not ctx.force and not missing and previous is not None and previous.digest == digest:
        LOGGER.debug("static assets unchanged")
        return 0
    for name in previous.payload.get("files", []) if previous else []:
        if name not in names:
            remove_file_if_exists(ctx.output_dir / name)
    copied = copy_static(ctx.static_dir, ctx.output_dir) if files else 0
    ctx.store.store(STATIC_KEY, digest, {"files": names})
    ctx.stats.static_copied = copied
    return copied


@contextmanager
def stage(ctx: BuildContext, name: str) -> Iterator[None]:
    started = time.perf_counter()
    yield
    if ctx.plan.verbose:
        LOGGER.info("%s finished in %.3fs", name, time.perf_counter() - started)


def render_content(ctx: BuildContext) -> None:
    started = time.perf_counter()
    with stage(ctx, "discovery"):
        posts = discover_posts(ctx.posts_dir, ctx.settings)
    LOGGER.info("discovered %d posts", len(posts))

    with stage(ctx, "posts"):
        result = render_posts(ctx, posts)
    changes = ChangeSet.build(result.posts, result.changed, result.removed, result.previous)
    LOGGER.debug(
        "change set: %d changed, %d removed, %d tags, %d months",
        len(changes.changed),
        len(changes.removed),
        len(changes.tags),
        len(changes.months),
    )
    buckets = group_posts(result.posts)

    with stage(ctx, "home"):
        render_home(ctx, result.posts)
    with stage(ctx, "tags"):
        render_tags(ctx, result.posts, changes, buckets)
    with stage(ctx, "archives"):
        render_archives(ctx, result.posts, changes, buckets)
    with stage(ctx, "standalone pages"):
        standalone = render_standalone_pages(ctx)
    with stage(ctx, "feeds"):
        render_feeds(ctx, result.posts)
        render_sitemap(ctx, result.posts, standalone)
    with stage(ctx, "search index"):
        render_search_index(ctx, result.posts)
    LOGGER.info("content stage finished in %.2fs", time.perf_counter() - started)


def render_site(
    root: Path,
    plan: RenderPlan,
    settings: Optional[Settings] = None,
    config_path: Optional[Path] = None,
) -> RenderStats:
    with open_build_context(root, plan, settings, config_path) as ctx:
        if ctx.plan.posts:
            render_content(ctx)
        if ctx.plan.static_assets:
            copy_static_assets(ctx)
        if ctx.plan.posts:
            ctx.store.store(SITE_INPUTS_KEY, ctx.fingerprint)
        return ctx.stats


def clear_cache(root: Path, settings: Settings) -> None:
    """Drop every store entry and the output tree so the next pass rebuilds everything."""
    store, _ = DigestStore.open_or_reset(store_path(root))
    with store:
        store.clear()
    clean_output_dir(root / settings.output, root)
    LOGGER.info("cache cleared")
