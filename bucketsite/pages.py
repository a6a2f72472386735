from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from .cache import ARCHIVE_PREFIX, TAG_PREFIX, hash_payload
from .content import Post, newest_first
from .context import BuildContext
from .pagination import remove_listing, render_paginated_listing
from .utils import remove_dir_if_empty, remove_file_if_exists
from .views import post_view, tag_slug, tag_url

LOGGER = logging.getLogger(__name__)

__all__ = [
    "ChangeSet",
    "render_archives",
    "render_home",
    "render_tags",
    "tag_slug",
]


@dataclass(frozen=True)
class ChangeSet:
    """Post keys touched in this pass and the buckets they belonged to, before and after."""

    changed: frozenset[str] = frozenset()
    removed: frozenset[str] = frozenset()
    tags: frozenset[str] = frozenset()
    years: frozenset[int] = frozenset()
    months: frozenset[tuple[int, int]] = frozenset()

    @property
    def empty(self) -> bool:
        return not self.changed and not self.removed

    @classmethod
    def build(
        cls,
        posts: Iterable[Post],
        changed: Iterable[str],
        removed: Iterable[str],
        previous: Mapping[str, Mapping[str, object]],
    ) -> "ChangeSet":
        changed = frozenset(changed)
        removed = frozenset(removed)
        tags: set[str] = set()
        years: set[int] = set()
        months: set[tuple[int, int]] = set()

        def add_old(payload: Optional[Mapping[str, object]]) -> None:
            if not payload:
                return
            tags.update(payload.get("tags") or [])
            if payload.get("year") is not None:
                year, month = int(payload["year"]), int(payload["month"])
                years.add(year)
                months.add((year, month))

        for post in posts:
            if post.key not in changed:
                continue
            tags.update(tag_slug(tag) for tag in post.tags)
            years.add(post.date.year)
            months.add((post.date.year, post.date.month))
            add_old(previous.get(post.key))
        for key in removed:
            add_old(previous.get(key))
        return cls(changed, removed, frozenset(tags), frozenset(years), frozenset(months))


@dataclass
class Buckets:
    tags: dict[str, list[Post]] = field(default_factory=lambda: defaultdict(list))
    tag_names: dict[str, str] = field(default_factory=dict)
    years: dict[int, list[Post]] = field(default_factory=lambda: defaultdict(list))
    months: dict[tuple[int, int], list[Post]] = field(default_factory=lambda: defaultdict(list))


def group_posts(posts: list[Post]) -> Buckets:
    buckets = Buckets()
    for post in newest_first(posts):
        for tag in post.tags:
            slug = tag_slug(tag)
            buckets.tags[slug].append(post)
            buckets.tag_names.setdefault(slug, tag)
        buckets.years[post.date.year].append(post)
        buckets.months[(post.date.year, post.date.month)].append(post)
    return buckets


def members_digest(posts: list[Post], **extra: object) -> str:
    return hash_payload({"posts": [[post.key, post.digest] for post in posts], **extra})


def render_home(ctx: BuildContext, posts: list[Post]) -> int:
    return render_paginated_listing(ctx, "home", "/", newest_first(posts), "index.html", {"title": ctx.settings.title})


def render_tags(ctx: BuildContext, posts: list[Post], changes: ChangeSet, buckets: Optional[Buckets] = None) -> int:
    buckets = buckets or group_posts(posts)
    settings = ctx.settings
    store = ctx.store
    written = 0

    for slug in sorted(buckets.tags):
        members = buckets.tags[slug]
        name = buckets.tag_names[slug]
        base = tag_url(slug)
        key = f"{TAG_PREFIX}{slug}"
        digest = members_digest(members, name=name)
        touched = slug in changes.tags or ctx.stale
        missing = not ctx.output_path(base).exists()
        if not touched and not missing and store.get_digest(key) == digest:
            continue
        LOGGER.debug("rendering tag %s (%d posts)", slug, len(members))
        per_page = settings.homepage_posts if settings.paginate_tags else max(len(members), 1)
        written += render_paginated_listing(
            ctx,
            f"tag:{slug}",
            base,
            members,
            "tag.html",
            {"tag": {"name": name, "slug": slug, "url": base}},
            per_page=per_page,
            head_context={"tag": {"count": len(members)}},
        )
        store.store(key, digest, {"name": name, "count": len(members)})

    for key in store.keys(TAG_PREFIX):
        slug = key[len(TAG_PREFIX) :]
        if slug in buckets.tags:
            continue
        LOGGER.debug("removing empty tag %s", slug)
        remove_listing(ctx, f"tag:{slug}", tag_url(slug))
        store.delete(key)
    return written


def archive_url(year: int, month: Optional[int] = None) -> str:
    if month is None:
        return f"/{year:04d}/"
    return f"/{year:04d}/{month:02d}/"


def render_archives(ctx: BuildContext, posts: list[Post], changes: ChangeSet, buckets: Optional[Buckets] = None) -> int:
    buckets = buckets or group_posts(posts)
    settings = ctx.settings
    store = ctx.store
    written = 0
    live = set()

    jobs = []
    for year in sorted(buckets.years):
        months = sorted({month for (y, month) in buckets.months if y == year}, reverse=True)
        jobs.append(
            (
                f"{ARCHIVE_PREFIX}{year:04d}",
                archive_url(year),
                "archive_year.html",
                buckets.years[year],
                year in changes.years,
                {
                    "year": year,
                    "months": [
                        {"month": m, "url": archive_url(year, m), "count": len(buckets.months[(year, m)])}
                        for m in months
                    ],
                },
            )
        )
    for (year, month) in sorted(buckets.months):
        jobs.append(
            (
                f"{ARCHIVE_PREFIX}{year:04d}-{month:02d}",
                archive_url(year, month),
                "archive_month.html",
                buckets.months[(year, month)],
                (year, month) in changes.months,
                {"year": year, "month": month, "year_url": archive_url(year)},
            )
        )

    for key, url, template, members, touched, context in jobs:
        live.add(key)
        digest = members_digest(members)
        path = ctx.output_path(url)
        if not (touched or ctx.stale) and path.exists() and store.get_digest(key) == digest:
            continue
        page_context = dict(context)
        page_context["posts"] = [post_view(post, settings) for post in members]
        ctx.write(url, ctx.templates.render(template, page_context, scope=url))
        store.store(key, digest, {"url": url, "count": len(members)})
        written += 1

    for key in store.keys(ARCHIVE_PREFIX):
        if key in live:
            continue
        entry = store.get(key)
        url = entry.payload.get("url") if entry else None
        if url:
            path = ctx.output_path(url)
            remove_file_if_exists(path)
            remove_dir_if_empty(path.parent)
            if len(key) > len(ARCHIVE_PREFIX) + 4:
                remove_dir_if_empty(path.parent.parent)
        store.delete(key)
        ctx.stats.pages_removed += 1

    ctx.stats.pages_written += written
    return written
