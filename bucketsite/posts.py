from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from .cache import POST_PREFIX, CacheEntry
from .content import Post, render_post_body
from .context import BuildContext
from .render import copy_file
from .utils import remove_tree
from .views import post_view, tag_slug

LOGGER = logging.getLogger(__name__)

NEW = "new"
CHANGED = "changed"
UNCHANGED = "unchanged"


@dataclass(frozen=True)
class PostPass:
    """Outcome of the per-post stage, consumed by the derived stages."""

    posts: list[Post]
    changed: frozenset[str]
    removed: frozenset[str]
    previous: dict[str, dict]


def resolve_workers(configured: int, jobs: int) -> int:
    workers = configured if configured > 0 else (os.cpu_count() or 1)
    return max(1, min(workers, 32, jobs or 1))


def load_previous(ctx: BuildContext) -> dict[str, CacheEntry]:
    return {entry.key[len(POST_PREFIX) :]: entry for entry in ctx.store.entries(POST_PREFIX)}


def classify(post: Post, previous: Optional[CacheEntry], force: bool) -> str:
    if previous is None:
        return NEW
    if force or previous.digest != post.digest:
        return CHANGED
    return UNCHANGED


def post_payload(post: Post) -> dict:
    return {
        "permalink": post.permalink,
        "tags": sorted({tag_slug(tag) for tag in post.tags}),
        "year": post.date.year,
        "month": post.date.month,
        "cursor": post.cursor,
        "body_html": post.body_html,
        "excerpt": post.excerpt,
        "search_text": post.search_text,
    }


def cached_body(post: Post, entry: CacheEntry) -> Optional[Post]:
    payload = entry.payload
    if not all(name in payload for name in ("body_html", "excerpt", "search_text")):
        return None
    return post.with_body(payload["body_html"], payload["excerpt"], payload["search_text"])


def render_bodies(posts: list[Post], workers: int) -> list[Post]:
    if not posts:
        return []
    max_workers = resolve_workers(workers, len(posts))
    if max_workers == 1:
        return [render_post_body(post) for post in posts]
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(render_post_body, posts))


def resolve_template(ctx: BuildContext, post: Post) -> str:
    name = post.template_name
    if name != "post.html" and not ctx.templates.has(name):
        LOGGER.warning("%s: template %s not found, falling back to post.html", post.content_path, name)
        return "post.html"
    return name


def write_post(ctx: BuildContext, post: Post, clean: bool) -> None:
    target_dir = ctx.output_path(post.permalink).parent
    if clean and target_dir.exists():
        remove_tree(target_dir, target_dir.parent)
    data = ctx.templates.render(
        resolve_template(ctx, post),
        {"post": post_view(post, ctx.settings)},
        scope=str(post.content_path),
    )
    ctx.write(post.permalink, data)
    for attachment in post.attachments:
        copy_file(post.source_dir / attachment.path, target_dir / attachment.path)


def render_posts(ctx: BuildContext, posts: list[Post]) -> PostPass:
    """Render post pages, persist their digests and prune removed posts."""
    previous = load_previous(ctx)
    statuses = {post.key: classify(post, previous.get(post.key), ctx.force) for post in posts}

    ready: dict[str, Post] = {}
    to_convert = []
    for post in posts:
        entry = previous.get(post.key)
        reused = cached_body(post, entry) if statuses[post.key] == UNCHANGED and entry else None
        if reused is None:
            to_convert.append(post)
        else:
            ready[post.key] = reused
    for rendered in render_bodies(to_convert, ctx.settings.build_workers):
        ready[rendered.key] = rendered
    converted = {post.key for post in to_convert}

    rendered_posts = [ready[post.key] for post in posts]
    live_permalinks = {post.permalink for post in rendered_posts}
    ctx.stats.posts_total = len(rendered_posts)
    for post in rendered_posts:
        entry = previous.get(post.key)
        old_permalink = entry.payload.get("permalink") if entry else None
        if old_permalink and old_permalink not in live_permalinks:
            LOGGER.info("%s moved from %s to %s", post.key, old_permalink, post.permalink)
            remove_tree(ctx.output_path(old_permalink).parent, ctx.output_dir)
        dirty = post.key in converted or statuses[post.key] != UNCHANGED
        missing = not ctx.output_path(post.permalink).exists()
        if not (dirty or missing or ctx.stale):
            continue
        LOGGER.debug("rendering %s -> %s", post.key, post.permalink)
        write_post(ctx, post, clean=dirty or missing)
        ctx.store.store(f"{POST_PREFIX}{post.key}", post.digest, post_payload(post))
        ctx.stats.posts_rendered += 1

    live = {post.key for post in rendered_posts}
    removed = set()
    for key, entry in previous.items():
        if key in live:
            continue
        permalink = entry.payload.get("permalink")
        LOGGER.info("pruning %s (%s)", key, permalink)
        if permalink and permalink not in live_permalinks:
            remove_tree(ctx.output_path(permalink).parent, ctx.output_dir)
        ctx.store.delete(f"{POST_PREFIX}{key}")
        removed.add(key)
    ctx.stats.posts_pruned = len(removed)

    changed = frozenset(key for key, status in statuses.items() if status != UNCHANGED)
    return PostPass(
        posts=rendered_posts,
        changed=changed,
        removed=frozenset(removed),
        previous={key: entry.payload for key, entry in previous.items()},
    )
