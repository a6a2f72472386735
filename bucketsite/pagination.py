"""Cursor-based listing pagination.

Chunks are anchored at the oldest post, so a page that is not the head keeps
exactly the same members (and the same cursor) when newer posts arrive. Only
the head page absorbs new posts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from .cache import CURSOR_PREFIX, PAGE_PREFIX, hash_payload
from .content import Post
from .context import BuildContext
from .utils import remove_file_if_exists, remove_tree
from .views import post_view

LOGGER = logging.getLogger(__name__)

HEAD = "head"


@dataclass(frozen=True)
class Page:
    cursor: Optional[str]
    posts: tuple[Post, ...]
    older_cursor: Optional[str]
    is_head: bool

    @property
    def digest(self) -> str:
        return hash_payload(
            {
                "cursor": self.cursor,
                "older": self.older_cursor,
                "posts": [[post.key, post.digest] for post in self.posts],
            }
        )


def paginate(posts: Sequence[Post], per_page: int) -> list[Page]:
    """Split newest-first ``posts`` into a head page followed by cursor pages.

    Pages are counted from the oldest post, so the head page takes the
    remainder: 12 posts at 5 per page give sizes 2, 5, 5. When the count
    divides evenly the head is a full page. No posts yield one empty head page.
    """
    if per_page <= 0:
        raise ValueError("per_page must be greater than zero")
    total = len(posts)
    if total == 0:
        return [Page(cursor=None, posts=(), older_cursor=None, is_head=True)]

    head_size = total % per_page or per_page
    chunks = [tuple(posts[:head_size])]
    for start in range(head_size, total, per_page):
        chunks.append(tuple(posts[start : start + per_page]))

    cursors: list[Optional[str]] = [None] + [chunk[-1].cursor for chunk in chunks[1:]]
    pages = []
    for index, chunk in enumerate(chunks):
        older = cursors[index + 1] if index + 1 < len(chunks) else None
        pages.append(Page(cursor=cursors[index], posts=chunk, older_cursor=older, is_head=index == 0))
    return pages


def page_url(base: str, cursor: Optional[str]) -> str:
    if cursor is None:
        return base
    return f"{base}page/{cursor}/"


def render_paginated_listing(
    ctx: BuildContext,
    listing: str,
    base: str,
    posts: Sequence[Post],
    template: str,
    context: Mapping[str, object],
    per_page: Optional[int] = None,
    head_context: Optional[Mapping[str, object]] = None,
) -> int:
    """Write the pages of one listing; returns how many files were written.

    ``listing`` names the listing in the store (``home``, ``tag:rust``) and
    ``base`` is its URL root (``/``, ``/tags/rust/``). ``context`` is shared by
    every page and is part of each page digest. ``head_context`` is merged into
    the head page only, for values such as member counts that change with every
    new post.
    """
    settings = ctx.settings
    store = ctx.store
    per_page = per_page or settings.homepage_posts
    pages = paginate(posts, per_page)
    written = 0

    for page in pages:
        key = f"{PAGE_PREFIX}{listing}:{page.cursor or HEAD}"
        url = page_url(base, page.cursor)
        targets = [url]
        if page.is_head:
            targets.append(f"{base}page/")
        extra = head_context if page.is_head else None
        digest = hash_payload({"page": page.digest, "context": context, "head": extra})
        missing = any(not ctx.output_path(target).exists() for target in targets)
        if not ctx.stale and not missing and store.get_digest(key) == digest:
            continue

        page_context = dict(context)
        if extra:
            for name, value in extra.items():
                if isinstance(value, Mapping) and isinstance(page_context.get(name), Mapping):
                    page_context[name] = {**page_context[name], **value}
                else:
                    page_context[name] = value
        page_context.update(
            {
                "posts": [post_view(post, settings) for post in page.posts],
                "page": {
                    "cursor": page.cursor,
                    "is_head": page.is_head,
                    "url": url,
                    "home_url": base,
                    "older_url": page_url(base, page.older_cursor) if page.older_cursor else None,
                },
            }
        )
        data = ctx.templates.render(template, page_context, scope=url)
        for target in targets:
            ctx.write(target, data)
        store.store(key, digest, {"url": url, "posts": [post.key for post in page.posts]})
        written += 1

    published = [page.cursor for page in pages if page.cursor is not None]
    cursor_key = f"{CURSOR_PREFIX}{listing}"
    previous = store.get(cursor_key)
    old_cursors = previous.payload.get("cursors", []) if previous else []
    for cursor in old_cursors:
        if cursor in published:
            continue
        LOGGER.debug("removing stale page %s of %s", cursor, listing)
        remove_tree(ctx.output_path(page_url(base, cursor)).parent, ctx.output_dir)
        store.delete(f"{PAGE_PREFIX}{listing}:{cursor}")
        ctx.stats.pages_removed += 1
    store.store(cursor_key, hash_payload(published), {"cursors": published, "base": base})
    ctx.stats.pages_written += written
    return written


def remove_listing(ctx: BuildContext, listing: str, base: str) -> None:
    """Delete every page of a listing that no longer has members."""
    store = ctx.store
    cursor_key = f"{CURSOR_PREFIX}{listing}"
    entry = store.get(cursor_key)
    for cursor in entry.payload.get("cursors", []) if entry else []:
        remove_tree(ctx.output_path(page_url(base, cursor)).parent, ctx.output_dir)
    remove_file_if_exists(ctx.output_path(f"{base}page/"))
    remove_file_if_exists(ctx.output_path(base))
    remove_tree(ctx.output_path(f"{base}page/").parent, ctx.output_dir)
    store.delete_prefix(f"{PAGE_PREFIX}{listing}:")
    store.delete(cursor_key)
    ctx.stats.pages_removed += 1
