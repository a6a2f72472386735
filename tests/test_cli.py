from __future__ import annotations

from bucketsite.cli import build_parser, main, plan_from_args
from bucketsite.context import BuildMode


def test_plan_defaults_to_everything() -> None:
    plan = plan_from_args(build_parser().parse_args([]))
    assert plan.posts and plan.static_assets
    assert plan.mode is BuildMode.CHANGED


def test_plan_flags() -> None:
    plan = plan_from_args(build_parser().parse_args(["--static", "--force"]))
    assert plan.static_assets and not plan.posts
    assert plan.mode is BuildMode.FORCE


def test_successful_run_prints_summary(project, capsys) -> None:
    project.write_post("alpha")
    assert main(["--root", str(project.root)]) == 0
    out = capsys.readouterr().out
    assert "[SUMMARY] posts rendered: 1/1" in out
    assert project.out("2024/01/15/alpha/index.html").exists()


def test_errors_exit_non_zero_with_one_line(project, capsys) -> None:
    project.write_post("alpha", date="someday")
    assert main(["--root", str(project.root)]) == 1
    err = capsys.readouterr().err
    assert "error:" in err
    assert "index.md" in err


def test_missing_config_file(project, capsys) -> None:
    assert main(["--root", str(project.root), "--config", "nope.toml"]) == 1
    assert "nope.toml" in capsys.readouterr().err


def test_clear_cache_forces_full_render(project, capsys) -> None:
    project.write_post("alpha")
    assert main(["--root", str(project.root)]) == 0
    assert main(["--root", str(project.root), "--clear-cache"]) == 0
    assert "[SUMMARY] posts rendered: 1/1" in capsys.readouterr().out.splitlines()[-2]
