"""Template-facing views of posts and tags."""

from __future__ import annotations

import re

from markupsafe import Markup

from .config import Settings
from .content import Post
from .render import absolutize_attachment_links
from .utils import absolute_url, format_date, rfc3339_date, rfc822_date

TAG_SLUG_RE = re.compile(r"[^a-z0-9]+")


def tag_slug(name: str) -> str:
    slug = TAG_SLUG_RE.sub("-", name.strip().lower()).strip("-")
    return slug or "untagged"


def tag_url(slug: str) -> str:
    return f"/tags/{slug}/"


def post_view(post: Post, settings: Settings) -> dict:
    return {
        "key": post.key,
        "title": post.display_title,
        "slug": post.slug,
        "permalink": post.permalink,
        "url": absolute_url(settings.base_url, post.permalink),
        "date": post.date,
        "date_display": format_date(post.date, settings.date_format),
        "date_iso": rfc3339_date(post.date),
        "date_rfc822": rfc822_date(post.date),
        "tags": [{"name": tag, "slug": tag_slug(tag), "url": tag_url(tag_slug(tag))} for tag in post.tags],
        "abstract": post.abstract,
        "excerpt": post.excerpt,
        "type": post.post_type,
        "language": post.language,
        "body": Markup(post.body_html),
        "body_absolute": Markup(absolute_body(post, settings)),
        "attachments": [
            {"path": item.path, "size": item.size, "mime_type": item.mime_type} for item in post.attachments
        ],
        "extra": dict(post.extra),
    }


def absolute_body(post: Post, settings: Settings) -> str:
    return absolutize_attachment_links(post.body_html, post.permalink, settings.base_url, post.attached_paths)
