from __future__ import annotations

import logging
import queue
import threading
from pathlib import Path
from typing import Callable, Iterable, Optional

from watchfiles import watch as watch_directory

from .config import CONFIG_CANDIDATES
from .errors import BucketsiteError

LOGGER = logging.getLogger(__name__)

WATCHED_DIRS = ("posts", "templates", "pages", "static")


class RebuildQueue:
    """Capacity-one trigger queue drained by a single worker thread.

    ``request`` never blocks: while a rebuild is already pending, further
    triggers are redundant and dropped. A trigger arriving while a pass is
    running queues exactly one follow-up pass.
    """

    def __init__(self, rebuild: Callable[[], object], poll_interval: float = 0.2) -> None:
        self._rebuild = rebuild
        self._queue: queue.Queue = queue.Queue(maxsize=1)
        self._stop = threading.Event()
        self._poll_interval = poll_interval
        self._thread = threading.Thread(target=self._run, name="bucketsite-rebuild", daemon=True)
        self.dropped = 0
        self.runs = 0

    def start(self) -> "RebuildQueue":
        self._thread.start()
        return self

    def request(self) -> bool:
        try:
            self._queue.put_nowait(True)
        except queue.Full:
            self.dropped += 1
            return False
        return True

    def join(self) -> None:
        """Block until every accepted trigger has been processed."""
        self._queue.join()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        self._thread.join(timeout)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                continue
            try:
                self._rebuild()
            except BucketsiteError as exc:
                LOGGER.error("rebuild failed: %s", exc)
            except Exception:
                LOGGER.exception("rebuild crashed")
            finally:
                self.runs += 1
                self._queue.task_done()

    def __enter__(self) -> "RebuildQueue":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


def watch_targets(root: Path, config_path: Optional[Path] = None) -> list[Path]:
    targets = [root / name for name in WATCHED_DIRS if (root / name).exists()]
    if config_path is not None:
        targets.append(config_path)
    else:
        targets.extend(root / name for name in CONFIG_CANDIDATES if (root / name).exists())
    return targets


def relevant_changes(changes: Iterable[tuple[object, str]], output_dir: Path) -> list[Path]:
    output = output_dir.resolve()
    relevant = []
    for _, changed in changes:
        path = Path(changed).resolve()
        if path == output or output in path.parents:
            continue
        relevant.append(path)
    return relevant


def watch_project(
    root: Path,
    rebuild: Callable[[], object],
    output_dir: Path,
    config_path: Optional[Path] = None,
    debounce: float = 0.5,
    stop_event: Optional[threading.Event] = None,
) -> None:
    targets = watch_targets(root, config_path)
    if not targets:
        raise BucketsiteError(f"{root}: nothing to watch")
    LOGGER.info("watching %s", ", ".join(str(target) for target in targets))
    with RebuildQueue(rebuild) as rebuilds:
        rebuilds.request()
        try:
            for changes in watch_directory(
                *targets,
                debounce=int(max(debounce, 0.05) * 1000),
                stop_event=stop_event,
            ):
                relevant = relevant_changes(changes, output_dir)
                if not relevant:
                    continue
                LOGGER.debug("changes: %s", ", ".join(str(path) for path in relevant[:5]))
                if not rebuilds.request():
                    LOGGER.debug("rebuild already pending; coalescing")
        except KeyboardInterrupt:
            LOGGER.info("watch stopped")
