from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from bucketsite.content import Post, newest_first
from bucketsite.pagination import page_url, paginate


def make_posts(count: int) -> list[Post]:
    start = dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)
    posts = []
    for index in range(count):
        slug = f"post-{index:02d}"
        posts.append(
            Post(
                key=slug,
                slug=slug,
                date=start + dt.timedelta(days=index),
                source_dir=Path("posts") / slug,
                content_path=Path("posts") / slug / "index.md",
                source_format="md",
                body_source="",
                digest=f"digest-{index}",
            )
        )
    return newest_first(posts)


def test_twelve_posts_five_per_page() -> None:
    pages = paginate(make_posts(12), 5)
    assert [len(page.posts) for page in pages] == [2, 5, 5]
    assert pages[0].is_head and pages[0].cursor is None
    assert pages[0].older_cursor == pages[1].cursor
    assert pages[1].older_cursor == pages[2].cursor
    assert pages[2].older_cursor is None
    for page in pages[1:]:
        assert page.cursor == page.posts[-1].cursor


def test_exactly_one_page() -> None:
    pages = paginate(make_posts(5), 5)
    assert len(pages) == 1
    assert len(pages[0].posts) == 5
    assert pages[0].older_cursor is None


def test_no_posts_yields_empty_head() -> None:
    pages = paginate([], 5)
    assert len(pages) == 1
    assert pages[0].posts == ()
    assert pages[0].is_head


def test_every_post_appears_once_in_order() -> None:
    posts = make_posts(23)
    pages = paginate(posts, 4)
    flattened = [post for page in pages for post in page.posts]
    assert flattened == posts


def test_new_post_leaves_cursor_pages_untouched() -> None:
    posts = make_posts(13)
    before = paginate(posts[1:], 5)
    after = paginate(posts, 5)
    before_pages = {page.cursor: page.digest for page in before[1:]}
    after_pages = {page.cursor: page.digest for page in after[1:]}
    assert before_pages == after_pages
    assert len(after[0].posts) == 3


def test_head_overflow_creates_a_new_cursor_page() -> None:
    posts = make_posts(11)
    before = paginate(posts[1:], 5)
    after = paginate(posts, 5)
    assert len(before) == 2
    assert len(after) == 3
    assert {page.cursor for page in before[1:]} <= {page.cursor for page in after[1:]}


def test_zero_per_page_is_rejected() -> None:
    with pytest.raises(ValueError):
        paginate(make_posts(2), 0)


def test_page_urls() -> None:
    assert page_url("/", None) == "/"
    assert page_url("/", "1700000000-a") == "/page/1700000000-a/"
    assert page_url("/tags/rust/", "17-b") == "/tags/rust/page/17-b/"
