from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable, Optional
from xml.sax.saxutils import escape as xml_escape

from markupsafe import Markup

from .cache import FEED_PREFIX, hash_payload
from .content import Post, newest_first
from .context import BuildContext
from .pages import archive_url, group_posts
from .pagination import page_url, paginate
from .utils import absolute_url, rfc3339_date, rfc822_date, remove_file_if_exists
from .views import absolute_body, post_view, tag_slug, tag_url

LOGGER = logging.getLogger(__name__)

RSS_KEY = f"{FEED_PREFIX}rss"
SITEMAP_KEY = f"{FEED_PREFIX}sitemap"
SITEMAP_PATH = "/sitemap.xml"


def cdata(text: str) -> Markup:
    safe = text.replace("]]>", "]]]]><![CDATA[>")
    return Markup(f"<![CDATA[{safe}]]>")


def feed_path(slug: Optional[str] = None) -> str:
    if slug is None:
        return "/rss.xml"
    return f"/rss-{slug}.xml"


def render_feed(ctx: BuildContext, posts: list[Post], slug: Optional[str] = None, name: Optional[str] = None) -> bool:
    settings = ctx.settings
    window = newest_first(posts)[: settings.feed_limit]
    key = RSS_KEY if slug is None else f"{RSS_KEY}:{slug}"
    path = feed_path(slug)
    digest = hash_payload({"posts": [[post.key, post.digest] for post in window], "tag": slug})
    if not ctx.stale and ctx.output_path(path).exists() and ctx.store.get_digest(key) == digest:
        return False

    items = []
    for post in window:
        view = post_view(post, settings)
        view["description"] = cdata(absolute_body(post, settings) or view["excerpt"])
        view["pub_date"] = rfc822_date(post.date)
        items.append(view)
    feed = {
        "title": settings.title or "",
        "link": absolute_url(settings.base_url, tag_url(slug) if slug else "/"),
        "self_url": absolute_url(settings.base_url, path),
        "last_build": rfc822_date(window[0].date) if window else None,
        "tag": name,
    }
    data = ctx.templates.render("rss.xml", {"feed": feed, "posts": items}, scope=path)
    ctx.write(path, data)
    ctx.store.store(key, digest, {"path": path, "count": len(window)})
    ctx.stats.feeds_written += 1
    LOGGER.debug("wrote feed %s (%d items)", path, len(window))
    return True


def render_feeds(ctx: BuildContext, posts: list[Post]) -> int:
    written = int(render_feed(ctx, posts))
    wanted = {tag_slug(tag) for tag in ctx.settings.rss_tags}
    buckets = group_posts(posts)
    for slug in sorted(wanted):
        members = buckets.tags.get(slug, [])
        name = buckets.tag_names.get(slug, slug)
        written += int(render_feed(ctx, members, slug, name))
    for key in ctx.store.keys(f"{RSS_KEY}:"):
        slug = key[len(RSS_KEY) + 1 :]
        if slug in wanted:
            continue
        remove_file_if_exists(ctx.output_path(feed_path(slug)))
        ctx.store.delete(key)
    return written


def sitemap_urls(
    ctx: BuildContext, posts: list[Post], standalone: Iterable[str] = ()
) -> list[tuple[str, Optional[dt.datetime]]]:
    settings = ctx.settings
    ordered = newest_first(posts)
    buckets = group_posts(posts)
    newest = ordered[0].date if ordered else None
    urls: list[tuple[str, Optional[dt.datetime]]] = [("/", newest)]

    for page in paginate(ordered, settings.homepage_posts)[1:]:
        urls.append((page_url("/", page.cursor), page.posts[0].date))
    for post in ordered:
        urls.append((post.permalink, post.date))
    for slug in sorted(buckets.tags):
        members = buckets.tags[slug]
        base = tag_url(slug)
        urls.append((base, members[0].date))
        if settings.paginate_tags:
            for page in paginate(members, settings.homepage_posts)[1:]:
                urls.append((page_url(base, page.cursor), page.posts[0].date))
    for year in sorted(buckets.years, reverse=True):
        urls.append((archive_url(year), buckets.years[year][0].date))
    for (year, month) in sorted(buckets.months, reverse=True):
        urls.append((archive_url(year, month), buckets.months[(year, month)][0].date))
    for url in sorted(standalone):
        urls.append((url, None))
    return urls


def build_sitemap(base_url: str, urls: list[tuple[str, Optional[dt.datetime]]]) -> str:
    items = []
    for path, lastmod in urls:
        lines = ["<url>", f"<loc>{xml_escape(absolute_url(base_url, path))}</loc>"]
        if lastmod is not None:
            lines.append(f"<lastmod>{rfc3339_date(lastmod)}</lastmod>")
        lines.append("</url>")
        items.append("\n".join(lines))
    return "\n".join(
        [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
            *items,
            "</urlset>",
            "",
        ]
    )


def render_sitemap(ctx: BuildContext, posts: list[Post], standalone: Iterable[str] = ()) -> bool:
    urls = sitemap_urls(ctx, posts, standalone)
    digest = hash_payload({"urls": [[path, rfc3339_date(lastmod) if lastmod else None] for path, lastmod in urls]})
    if not ctx.stale and ctx.output_path(SITEMAP_PATH).exists() and ctx.store.get_digest(SITEMAP_KEY) == digest:
        return False
    ctx.write(SITEMAP_PATH, build_sitemap(ctx.settings.base_url, urls).encode("utf-8"))
    ctx.store.store(SITEMAP_KEY, digest, {"count": len(urls)})
    ctx.stats.feeds_written += 1
    return True
