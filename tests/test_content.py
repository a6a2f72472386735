from __future__ import annotations

import datetime as dt
import os
from pathlib import Path

import pytest

from bucketsite.config import Settings
from bucketsite.content import (
    build_permalink,
    canonical_language,
    discover_posts,
    guess_language,
    parse_front_matter,
    parse_post_date,
    render_post_body,
    slugify,
)
from bucketsite.errors import AttachmentMissingError, DiscoveryError, FrontMatterError

ORIGIN = Path("posts/example/index.md")
UTC = dt.timezone.utc


def test_slugify_collapses_runs_and_trims() -> None:
    assert slugify("Hello, World!") == "hello-world"
    assert slugify("  --Rust_and  Python-- ") == "rust-and-python"
    assert slugify("!!!") == ""


def test_permalink_uses_date_components() -> None:
    date = dt.datetime(2024, 3, 5, 23, 30, tzinfo=dt.timezone(dt.timedelta(hours=2)))
    assert build_permalink(date, "hello-world") == "/2024/03/05/hello-world/"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-01-02T03:04:05Z", dt.datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)),
        (
            "2024-01-02T03:04:05+02:00",
            dt.datetime(2024, 1, 2, 3, 4, 5, tzinfo=dt.timezone(dt.timedelta(hours=2))),
        ),
        (
            "2024-01-02 03:04:05 +0530",
            dt.datetime(2024, 1, 2, 3, 4, 5, tzinfo=dt.timezone(dt.timedelta(hours=5, minutes=30))),
        ),
        (
            "2024-01-02 03:04:05 -03:00",
            dt.datetime(2024, 1, 2, 3, 4, 5, tzinfo=dt.timezone(-dt.timedelta(hours=3))),
        ),
        ("2024-01-02 03:04:05 UTC", dt.datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)),
    ],
)
def test_parse_post_date_accepts_supported_forms(value: str, expected: dt.datetime) -> None:
    parsed = parse_post_date(value, UTC, ORIGIN)
    assert parsed == expected
    assert parsed.utcoffset() == expected.utcoffset()


def test_naive_date_uses_default_offset() -> None:
    offset = dt.timezone(dt.timedelta(hours=2))
    parsed = parse_post_date("2024-01-02 03:04:05", offset, ORIGIN)
    assert parsed.utcoffset() == dt.timedelta(hours=2)
    assert parsed.hour == 3


@pytest.mark.parametrize("value", ["2024-01-02", "yesterday", "", "2024-13-40 00:00:00", None])
def test_parse_post_date_rejects_other_values(value) -> None:
    with pytest.raises(FrontMatterError) as excinfo:
        parse_post_date(value, UTC, ORIGIN)
    assert str(ORIGIN) in str(excinfo.value)


def test_front_matter_keeps_dates_as_strings() -> None:
    meta, body = parse_front_matter("---\ndate: 2024-01-02 03:04:05\ntitle: Hi\n---\nBody\n", ORIGIN)
    assert meta["date"] == "2024-01-02 03:04:05"
    assert body.strip() == "Body"


def test_front_matter_tolerates_bom() -> None:
    meta, _ = parse_front_matter("﻿---\ntitle: Hi\n---\n", ORIGIN)
    assert meta == {"title": "Hi"}


@pytest.mark.parametrize(
    "text, message",
    [
        ("title: Hi\n", "missing front matter"),
        ("---\ntitle: Hi\n", "not terminated"),
        ("---\n- a\n- b\n---\n", "must be a mapping"),
        ("---\ntitle: [unclosed\n---\n", "invalid front matter"),
    ],
)
def test_front_matter_errors(text: str, message: str) -> None:
    with pytest.raises(FrontMatterError, match=message):
        parse_front_matter(text, ORIGIN)


def test_discover_reads_fields_and_extra(project) -> None:
    project.write_post(
        "first",
        date="2024-02-03T04:05:06Z",
        tags=["rust", "web"],
        extra="abstract: Short\ntype: Note\nlanguage: en_US\nimages: [a.png]\nrating: 5",
    )
    (post,) = discover_posts(project.root / "posts", Settings())
    assert post.key == "first"
    assert post.slug == "first"
    assert post.tags == ("rust", "web")
    assert post.abstract == "Short"
    assert post.post_type == "note"
    assert post.template_name == "post-note.html"
    assert post.language == "en"
    assert post.extra["images"] == ["a.png"]
    assert post.extra["rating"] == 5
    assert "title" not in post.extra
    assert post.permalink == "/2024/02/03/first/"
    assert post.cursor == f"{int(post.date.timestamp())}-first"


def test_comma_separated_tags_and_explicit_slug(project) -> None:
    project.write_post("dir-name", extra="slug: Custom Slug")
    path = project.root / "posts" / "dir-name" / "index.md"
    path.write_text(path.read_text().replace("---\nPost", "tags: 'a, b, , a'\n---\nPost"))
    (post,) = discover_posts(project.root / "posts", Settings())
    assert post.slug == "custom-slug"
    assert post.tags == ("a", "b")


def test_invalid_type_is_rejected(project) -> None:
    project.write_post("typed", extra="type: long form")
    with pytest.raises(FrontMatterError, match="type"):
        discover_posts(project.root / "posts", Settings())


def test_missing_date_is_rejected(project) -> None:
    directory = project.root / "posts" / "undated"
    directory.mkdir()
    (directory / "index.md").write_text("---\ntitle: No date\n---\nBody\n")
    with pytest.raises(FrontMatterError, match="date is required"):
        discover_posts(project.root / "posts", Settings())


def test_two_main_files_is_an_error(project) -> None:
    project.write_post("double")
    project.write_post("double", filename="other.md")
    with pytest.raises(DiscoveryError, match="exactly one main content file"):
        discover_posts(project.root / "posts", Settings())


def test_leaf_directory_without_main_file_is_an_error(project) -> None:
    (project.root / "posts" / "empty").mkdir()
    with pytest.raises(DiscoveryError, match="no main content file"):
        discover_posts(project.root / "posts", Settings())


def test_grouping_directories_are_descended(project) -> None:
    project.write_post("2024/first", date="2024-01-01 00:00:00")
    project.write_post("2024/second", date="2024-01-02 00:00:00")
    posts = discover_posts(project.root / "posts", Settings())
    assert [post.key for post in posts] == ["2024/first", "2024/second"]


def test_ignore_marker_skips_subtree(project) -> None:
    project.write_post("kept")
    project.write_post("drafts/wip")
    (project.root / "posts" / "drafts" / ".bucketignore").write_text("")
    (project.root / "posts" / "drafts" / "broken").mkdir()
    posts = discover_posts(project.root / "posts", Settings())
    assert [post.key for post in posts] == ["kept"]


def test_post_subdirectories_are_attachments_not_posts(project) -> None:
    project.write_post("gallery", attachments={"images/a.png": b"png"})
    (project.root / "posts" / "gallery" / "images" / "notes.md").write_text("not a post")
    (post,) = discover_posts(project.root / "posts", Settings())
    assert post.attached_paths == ["images/a.png"]
    assert post.attachments[0].mime_type == "image/png"
    assert post.attachments[0].size == 3


def test_missing_attachment_names_post_and_file(project) -> None:
    project.write_post("broken", extra="attached: [missing.pdf]")
    with pytest.raises(AttachmentMissingError) as excinfo:
        discover_posts(project.root / "posts", Settings())
    assert "missing.pdf" in str(excinfo.value)
    assert "broken" in str(excinfo.value)


def test_attachment_outside_post_is_rejected(project) -> None:
    project.write_post("escape", extra="attached: [../secret.txt]")
    with pytest.raises(FrontMatterError, match="inside the post directory"):
        discover_posts(project.root / "posts", Settings())


def test_slug_collision_names_both_directories(project) -> None:
    project.write_post("a/same", date="2024-01-01 00:00:00")
    project.write_post("b/same", date="2024-01-01 12:00:00")
    with pytest.raises(DiscoveryError) as excinfo:
        discover_posts(project.root / "posts", Settings())
    message = str(excinfo.value)
    assert "a/same" in message.replace(os.sep, "/")
    assert "b/same" in message.replace(os.sep, "/")


def test_missing_posts_root(tmp_path) -> None:
    with pytest.raises(DiscoveryError):
        discover_posts(tmp_path / "nowhere", Settings())


def test_empty_posts_root_is_allowed(project) -> None:
    assert discover_posts(project.root / "posts", Settings()) == []


def test_digest_ignores_mtime_and_tracks_attachments(project) -> None:
    project.write_post("stable", attachments={"data.bin": b"one"})
    (first,) = discover_posts(project.root / "posts", Settings())
    content = project.root / "posts" / "stable" / "index.md"
    os.utime(content, (1_000_000, 1_000_000))
    (second,) = discover_posts(project.root / "posts", Settings())
    assert first.digest == second.digest

    (project.root / "posts" / "stable" / "data.bin").write_bytes(b"two")
    (third,) = discover_posts(project.root / "posts", Settings())
    assert third.digest != first.digest


def test_language_mapping() -> None:
    settings = Settings()
    assert canonical_language("en-US", settings) == "en"
    assert canonical_language(" EL ", settings) == "el"
    assert canonical_language("fr_CA", settings) == "fr-ca"
    assert canonical_language(None, settings) == "en"


def test_language_aliases_map_to_configured_ids() -> None:
    settings = Settings()
    assert canonical_language("eng", settings) == "en"
    assert canonical_language("ell", settings) == "el"
    assert canonical_language("ENG_gb", settings) == "en"
    three_letter = Settings.from_mapping(
        {"search": {"default_language": "eng", "languages": [{"id": "eng", "name": "English"}]}}, ORIGIN
    )
    assert canonical_language("en", three_letter) == "eng"
    assert canonical_language("en-US", three_letter) == "eng"


def test_language_is_detected_when_missing(project) -> None:
    project.write_post("greek", body="Αυτό είναι ένα μεγαλύτερο κείμενο στα ελληνικά για τον καιρό και τον κήπο.")
    project.write_post(
        "german",
        body="Dies ist ein etwas längerer deutscher Text über das Wetter und den Garten im Sommer.",
        date="2024-01-16 10:00:00",
    )
    project.write_post("short", body="Tiny.", date="2024-01-17 10:00:00")
    project.write_post(
        "explicit",
        body="Αυτό είναι ένα μεγαλύτερο κείμενο στα ελληνικά για τον καιρό και τον κήπο.",
        extra="language: en",
        date="2024-01-18 10:00:00",
    )
    posts = {post.key: post for post in discover_posts(project.root / "posts", Settings())}
    assert posts["greek"].language == "el"
    assert posts["german"].language == "de"
    assert posts["short"].language == "en"
    assert posts["explicit"].language == "en"


def test_guess_language_needs_enough_text() -> None:
    assert guess_language("Καλημέρα") is None
    assert guess_language("   ") is None


def test_unreadable_attachment_names_the_file(project, monkeypatch) -> None:
    project.write_post("photos", attachments={"photo.jpg": b"\xff\xd8"})
    original = Path.read_bytes

    def read_bytes(self: Path) -> bytes:
        if self.name == "photo.jpg":
            raise PermissionError(13, "Permission denied")
        return original(self)

    monkeypatch.setattr(Path, "read_bytes", read_bytes)
    with pytest.raises(DiscoveryError, match="photo.jpg"):
        discover_posts(project.root / "posts", Settings())


def test_render_post_body_markdown_and_html(project) -> None:
    project.write_post("md", body="First *paragraph* here.\n\nSecond one.")
    project.write_post("raw", filename="index.html", body="  <p>Raw &amp; ready</p>  ", date="2024-01-16 00:00:00")
    posts = {post.key: render_post_body(post) for post in discover_posts(project.root / "posts", Settings())}
    assert "<em>paragraph</em>" in posts["md"].body_html
    assert posts["md"].excerpt == "First paragraph here."
    assert posts["md"].search_text == "First paragraph here. Second one."
    assert posts["raw"].body_html == "<p>Raw &amp; ready</p>"
    assert posts["raw"].excerpt == "Raw & ready"
