from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

from bucketsite.context import BuildMode, RenderPlan
from bucketsite.engine import render_site

TEMPLATES = {
    "post.html": (
        "<html><body><h1>{{ post.title }}</h1>"
        "<ul>{% for tag in post.tags %}<li><a href=\"{{ tag.url }}\">{{ tag.name }}</a></li>{% endfor %}</ul>"
        "{{ post.body }}</body></html>\n"
    ),
    "index.html": (
        "<html><body>{% for item in posts %}<a href=\"{{ item.permalink }}\">{{ item.title }}</a>\n{% endfor %}"
        "{% if page.older_url %}<a rel=\"next\" href=\"{{ page.older_url }}\">Older</a>{% endif %}"
        "{% if not page.is_head %}<a href=\"{{ page.home_url }}\">Home</a>{% endif %}</body></html>\n"
    ),
    "tag.html": (
        "<html><body><h1>{{ tag.name }}</h1>{% for item in posts %}<a href=\"{{ item.permalink }}\">{{ item.title }}</a>\n"
        "{% endfor %}{% if page.older_url %}<a rel=\"next\" href=\"{{ page.older_url }}\">Older</a>{% endif %}"
        "</body></html>\n"
    ),
    "archive_year.html": (
        "<html><body><h1>{{ year }}</h1>{% for m in months %}<a href=\"{{ m.url }}\">{{ m.month }}</a>{% endfor %}"
        "{% for item in posts %}{{ item.title }}\n{% endfor %}</body></html>\n"
    ),
    "archive_month.html": (
        "<html><body><h1>{{ year }}-{{ month }}</h1>{% for item in posts %}{{ item.title }}\n{% endfor %}"
        "</body></html>\n"
    ),
    "rss.xml": (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>\n"
        "<rss version=\"2.0\"><channel><title>{{ feed.title }}</title><link>{{ feed.link }}</link>\n"
        "{% for item in posts %}<item><title>{{ item.title }}</title><link>{{ item.url }}</link>"
        "<guid>{{ item.url }}</guid><pubDate>{{ item.pub_date }}</pubDate>"
        "<description>{{ item.description }}</description></item>\n{% endfor %}"
        "</channel></rss>\n"
    ),
}

DEFAULT_CONFIG = 'title = "Test Site"\nbase_url = "https://blog.example.org"\nhomepage_posts = 5\n'


class Project:
    def __init__(self, root: Path) -> None:
        self.root = root
        self.output = root / "html"

    def write_config(self, text: str = DEFAULT_CONFIG) -> Path:
        path = self.root / "site.toml"
        path.write_text(text, encoding="utf-8")
        return path

    def write_template(self, name: str, text: str) -> Path:
        path = self.root / "templates" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def write_post(
        self,
        name: str,
        date: str = "2024-01-15 10:00:00",
        title: Optional[str] = None,
        tags: Optional[list[str]] = None,
        body: str = "Post body.",
        extra: str = "",
        filename: str = "index.md",
        attachments: Optional[dict[str, bytes]] = None,
    ) -> Path:
        directory = self.root / "posts" / name
        directory.mkdir(parents=True, exist_ok=True)
        lines = ["---", f"title: {title or name}", f'date: "{date}"']
        if tags is not None:
            lines.append(f"tags: [{', '.join(tags)}]")
        if attachments:
            lines.append(f"attached: [{', '.join(attachments)}]")
            for rel, data in attachments.items():
                target = directory / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
        if extra:
            lines.append(extra.rstrip("\n"))
        lines.append("---")
        path = directory / filename
        path.write_text("\n".join(lines) + "\n" + body + "\n", encoding="utf-8")
        return path

    def build(self, force: bool = False, posts: bool = False, static_assets: bool = False):
        plan = RenderPlan(
            posts=posts,
            static_assets=static_assets,
            mode=BuildMode.FORCE if force else BuildMode.CHANGED,
        )
        return render_site(self.root, plan)

    def out(self, relative: str) -> Path:
        return self.output / relative

    def snapshot(self) -> dict[str, int]:
        return {
            path.relative_to(self.output).as_posix(): path.stat().st_mtime_ns
            for path in self.output.rglob("*")
            if path.is_file()
        }


@pytest.fixture
def project(tmp_path: Path) -> Project:
    proj = Project(tmp_path)
    proj.write_config()
    for name, text in TEMPLATES.items():
        proj.write_template(name, text)
    (tmp_path / "posts").mkdir()
    return proj
