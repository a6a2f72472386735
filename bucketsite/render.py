from __future__ import annotations

import html as html_lib
import re
import shutil
import xml.etree.ElementTree as etree
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import markdown
from markdown.extensions import Extension
from markdown.treeprocessors import Treeprocessor

from .errors import OutputIOError
from .utils import absolute_url

EXCERPT_LIMIT = 280
TAG_RE = re.compile(r"<[^>]+>")
WHITESPACE_RE = re.compile(r"\s+")
STASH_RE = re.compile(r"\x02[^\x03]*\x03")
LINK_ATTR_RE = re.compile(r"""(?P<attr>\b(?:src|href))=(?P<quote>["'])(?P<value>.*?)(?P=quote)""", re.IGNORECASE)
EXTERNAL_PREFIXES = ("/", "#", "//", "http://", "https://", "mailto:", "tel:", "data:", "javascript:")
MARKDOWN_EXTENSIONS = ["extra", "sane_lists", "toc", "codehilite"]
MARKDOWN_CONFIGS = {"codehilite": {"css_class": "codehilite", "guess_lang": False}}


@dataclass(frozen=True)
class MarkdownRender:
    html: str
    excerpt: str


class ExcerptTreeprocessor(Treeprocessor):
    """Record the text of the first top-level paragraph."""

    def run(self, root: etree.Element) -> None:
        source = root
        for child in root:
            if child.tag == "p":
                source = child
                break
        text = STASH_RE.sub("", "".join(source.itertext()))
        self.md.excerpt_text = html_lib.unescape(text)


class ExcerptExtension(Extension):
    def extendMarkdown(self, md: markdown.Markdown) -> None:
        md.excerpt_text = ""
        # runs after the inline processor (priority 20) so emphasis/code are resolved
        md.treeprocessors.register(ExcerptTreeprocessor(md), "excerpt", 5)


def render_markdown(text: str) -> MarkdownRender:
    md = markdown.Markdown(
        extensions=[*MARKDOWN_EXTENSIONS, ExcerptExtension()],
        extension_configs=MARKDOWN_CONFIGS,
    )
    html_content = md.convert(text)
    excerpt = truncate(collapse_whitespace(md.excerpt_text), EXCERPT_LIMIT)
    md.reset()
    return MarkdownRender(html=html_content, excerpt=excerpt)


def strip_tags(html_text: str) -> str:
    return TAG_RE.sub(" ", html_text)


def collapse_whitespace(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text).strip()


def to_plain_text(html_text: str) -> str:
    return collapse_whitespace(html_lib.unescape(strip_tags(html_text)))


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def excerpt_from_html(html_text: str) -> str:
    return truncate(to_plain_text(html_text), EXCERPT_LIMIT)


def absolutize_attachment_links(
    html_text: str, permalink: str, base_url: str, attached: Iterable[str]
) -> str:
    """Rewrite ``src``/``href`` values that point at a post attachment to absolute URLs."""
    attached_paths = set(attached)
    if not attached_paths:
        return html_text

    def repl(match: re.Match) -> str:
        value = match.group("value").strip()
        if not value or value.lower().startswith(EXTERNAL_PREFIXES):
            return match.group(0)
        relative = value
        while relative.startswith("./"):
            relative = relative[2:]
        split_at = min((relative.find(ch) for ch in "?#" if ch in relative), default=len(relative))
        path_part, suffix = relative[:split_at], relative[split_at:]
        if path_part not in attached_paths:
            return match.group(0)
        url = absolute_url(base_url, permalink.rstrip("/") + "/" + path_part) + suffix
        return f"{match.group('attr')}={match.group('quote')}{url}{match.group('quote')}"

    return LINK_ATTR_RE.sub(repl, html_text)


def write_bytes(path: Path, data: bytes) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as exc:
        raise OutputIOError(f"failed to write {path}: {exc}") from exc


def copy_file(source: Path, dest: Path) -> None:
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
    except OSError as exc:
        raise OutputIOError(f"failed to copy {source} to {dest}: {exc}") from exc


def copy_static(static_dir: Path, output_dir: Path) -> int:
    copied = 0
    for item in sorted(static_dir.rglob("*")):
        if not item.is_file():
            continue
        copy_file(item, output_dir / item.relative_to(static_dir))
        copied += 1
    return copied
