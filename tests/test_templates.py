from __future__ import annotations

import datetime as dt

import pytest

from bucketsite.config import Settings
from bucketsite.errors import ConfigError, TemplateRenderError
from bucketsite.templates import TemplateSet


def load(project) -> TemplateSet:
    return TemplateSet.load(project.root / "templates", Settings.load(project.root / "site.toml"))


def test_globals_and_filters(project) -> None:
    project.write_template(
        "probe.html",
        "{{ config.title }}|{{ '/a/' | absolute_url }}|{{ when | date_format }}|{{ when | date_format('RFC3339') }}",
    )
    rendered = load(project).render(
        "probe.html", {"when": dt.datetime(2024, 5, 6, 7, 8, 9, tzinfo=dt.timezone.utc)}, scope="probe"
    )
    assert rendered == b"Test Site|https://blog.example.org/a/|2024-05-06|2024-05-06T07:08:09Z"


def test_html_is_autoescaped(project) -> None:
    project.write_template("escape.html", "{{ value }}")
    assert load(project).render("escape.html", {"value": "<b>"}, scope="x") == b"&lt;b&gt;"


def test_fingerprint_tracks_template_bytes(project) -> None:
    before = load(project).fingerprint
    assert load(project).fingerprint == before
    project.write_template("post.html", "changed")
    assert load(project).fingerprint != before


def test_missing_required_template(project) -> None:
    (project.root / "templates" / "rss.xml").unlink()
    with pytest.raises(ConfigError, match="rss.xml"):
        load(project)


def test_missing_templates_directory(tmp_path) -> None:
    with pytest.raises(ConfigError, match="does not exist"):
        TemplateSet.load(tmp_path / "templates", Settings())


def test_runtime_error_reports_line(project) -> None:
    project.write_template("broken.html", "line one\n{{ missing.attr }}\n")
    with pytest.raises(TemplateRenderError) as excinfo:
        load(project).render("broken.html", {}, scope="/2024/01/01/a/")
    error = excinfo.value
    assert error.template == "broken.html"
    assert error.line == 2
    assert str(error).startswith("/2024/01/01/a/: template 'broken.html' at line 2:")


def test_has(project) -> None:
    templates = load(project)
    assert templates.has("post.html")
    assert not templates.has("post-gallery.html")
