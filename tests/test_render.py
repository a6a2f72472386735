from __future__ import annotations

import datetime as dt

from bucketsite.render import (
    EXCERPT_LIMIT,
    absolutize_attachment_links,
    render_markdown,
    to_plain_text,
    truncate,
)
from bucketsite.utils import absolute_url, format_date, output_path_for, rfc3339_date, rfc822_date, split_list


def test_excerpt_is_first_paragraph() -> None:
    rendered = render_markdown("# Title\n\nIntro with `code` and **bold**.\n\nMore text.")
    assert rendered.excerpt == "Intro with code and bold."
    assert "<h1" in rendered.html


def test_excerpt_is_truncated() -> None:
    rendered = render_markdown("a" * 500)
    assert rendered.excerpt == "a" * EXCERPT_LIMIT + "..."


def test_empty_body() -> None:
    rendered = render_markdown("")
    assert rendered.html == ""
    assert rendered.excerpt == ""


def test_fenced_code_is_highlighted() -> None:
    rendered = render_markdown("```python\nprint('hi')\n```\n")
    assert 'class="codehilite"' in rendered.html


def test_plain_text_strips_tags_and_entities() -> None:
    assert to_plain_text("<p>Fish &amp; <em>chips</em></p>\n<p>Two</p>") == "Fish & chips Two"


def test_truncate_keeps_short_text() -> None:
    assert truncate("short", 10) == "short"


def test_attachment_links_become_absolute() -> None:
    html = (
        '<img src="images/a.png"><a href="./doc.pdf#page=2">doc</a>'
        '<a href="other.pdf">other</a><a href="https://x.org/images/a.png">ext</a>'
    )
    result = absolutize_attachment_links(
        html, "/2024/01/02/post/", "https://blog.example.org", ["images/a.png", "doc.pdf"]
    )
    assert 'src="https://blog.example.org/2024/01/02/post/images/a.png"' in result
    assert 'href="https://blog.example.org/2024/01/02/post/doc.pdf#page=2"' in result
    assert 'href="other.pdf"' in result
    assert 'href="https://x.org/images/a.png"' in result


def test_url_and_date_helpers(tmp_path) -> None:
    assert absolute_url("https://a.org/", "/x/") == "https://a.org/x/"
    assert absolute_url("https://a.org", "") == "https://a.org/"
    when = dt.datetime(2024, 1, 2, 3, 4, 5, tzinfo=dt.timezone.utc)
    assert rfc3339_date(when) == "2024-01-02T03:04:05Z"
    assert rfc822_date(when) == "Tue, 02 Jan 2024 03:04:05 +0000"
    assert format_date(when, "RFC3339") == "2024-01-02T03:04:05Z"
    assert format_date(when, "%d/%m/%Y") == "02/01/2024"
    assert output_path_for(tmp_path, "/") == tmp_path / "index.html"
    assert output_path_for(tmp_path, "/tags/rust/") == tmp_path / "tags" / "rust" / "index.html"
    assert output_path_for(tmp_path, "/rss.xml") == tmp_path / "rss.xml"
    assert split_list("a, b,,c ") == ["a", "b", "c"]
    assert split_list(["a", None, " "]) == ["a"]
