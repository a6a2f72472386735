from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

from .config import Settings, load_config
from .context import BuildMode, RenderPlan, resolve_config_path
from .engine import clear_cache, render_site
from .errors import BucketsiteError
from .watch import watch_project


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bucketsite",
        description="Render a static site incrementally from a posts directory.",
    )
    parser.add_argument("--config", default=None, help="Path to site.toml/site.yaml/site.json.")
    parser.add_argument("--root", default=".", help="Project root directory.")
    parser.add_argument("--posts", action="store_true", help="Render posts and every derived page.")
    parser.add_argument("--static", action="store_true", help="Copy static assets.")
    parser.add_argument("--force", action="store_true", help="Ignore stored digests and rebuild everything.")
    parser.add_argument("--verbose", action="store_true", help="Log per-stage progress.")
    parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Delete every stored digest and the output tree before rendering.",
    )
    parser.add_argument("--watch", action="store_true", help="Keep running and rebuild on changes.")
    parser.add_argument(
        "--debounce",
        default=0.5,
        type=float,
        help="Seconds to wait for changes to settle in watch mode.",
    )
    return parser


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def plan_from_args(args: argparse.Namespace) -> RenderPlan:
    return RenderPlan(
        posts=args.posts,
        static_assets=args.static,
        mode=BuildMode.FORCE if args.force else BuildMode.CHANGED,
        verbose=args.verbose,
    )


def load_settings(root: Path, config: Optional[str]) -> tuple[Settings, Optional[Path]]:
    config_path = resolve_config_path(root, Path(config) if config else None)
    if config_path is None:
        return Settings.from_mapping({}, root / "site.toml"), None
    return Settings.from_mapping(load_config(config_path), config_path), config_path


def run_once(root: Path, plan: RenderPlan, config_path: Optional[Path]) -> None:
    start = time.perf_counter()
    stats = render_site(root, plan, config_path=config_path)
    elapsed = time.perf_counter() - start
    print(stats.summary())
    print(f"Build completed in {elapsed:.2f}s.")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    root = Path(args.root).resolve()
    plan = plan_from_args(args)

    try:
        settings, config_path = load_settings(root, args.config)
        if args.clear_cache:
            clear_cache(root, settings)
        if args.watch:
            watch_project(
                root,
                lambda: run_once(root, plan, config_path),
                output_dir=root / settings.output,
                config_path=config_path,
                debounce=args.debounce,
            )
            return 0
        run_once(root, plan, config_path)
    except BucketsiteError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
