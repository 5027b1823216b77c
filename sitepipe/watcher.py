"""File watching for Sitepipe.

A WatchSession owns a set of watch rules and a watchdog observer. Every
file event below the project root is matched against all rules; each
matching rule fires independently, either running its tasks or calling its
callback. There is no deduplication between rules or events.

A failure inside a triggered run is logged and the session keeps running,
so one bad edit does not end a live-reload session.

Key classes:
- WatchRule: Globs bound to task names or a callback.
- WatchSession: Rule set plus observer lifecycle (start/stop/wait).
- _ChangeHandler: watchdog event handler feeding the session.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .utils import glob_match

logger = logging.getLogger(__name__)

_HANDLED_EVENTS = {
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
}


@dataclass
class WatchRule:
    """Glob patterns bound to the work they trigger.

    Attributes:
        globs: Patterns relative to the watched root.
        tasks: Task names run when a matching file changes.
        callback: Called with the changed path instead of running tasks.
        ignore: Patterns excluded even when a glob matches.
    """

    globs: tuple[str, ...]
    tasks: tuple[str, ...] = ()
    callback: Callable[[Path], Any] | None = None
    ignore: tuple[str, ...] = ()

    def __post_init__(self):
        self.globs = tuple(self.globs)
        self.tasks = tuple(self.tasks)
        self.ignore = tuple(self.ignore)
        if not self.globs:
            raise ValueError("A watch rule needs at least one glob")
        if bool(self.tasks) == (self.callback is not None):
            raise ValueError("A watch rule needs either tasks or a callback")

    def matches(self, rel_path: str) -> bool:
        if any(glob_match(pattern, rel_path) for pattern in self.ignore):
            return False
        return any(glob_match(pattern, rel_path) for pattern in self.globs)

    def __str__(self) -> str:
        target = ", ".join(self.tasks) if self.tasks else "callback"
        return f"{', '.join(self.globs)} -> {target}"


class WatchSession:
    """Watches a directory tree and dispatches changes to rules.

    Attributes:
        root: Directory watched recursively; rule globs are relative to it.
        runner: Runs a list of task names (blocking).
        rules: Active watch rules.
    """

    def __init__(
        self,
        root: Path,
        runner: Callable[[Sequence[str]], Any],
        rules: Iterable[WatchRule] = (),
    ):
        self.root = root
        self.runner = runner
        self.rules: list[WatchRule] = list(rules)
        self._observer = None
        self._stopped = threading.Event()

    @property
    def running(self) -> bool:
        return self._observer is not None

    def add_rule(self, rule: WatchRule) -> WatchRule:
        self.rules.append(rule)
        return rule

    def watch(
        self,
        globs: Iterable[str],
        on_change: Callable[[Path], Any] | str | Iterable[str],
        ignore: Iterable[str] = (),
    ) -> WatchRule:
        """Add a rule running tasks, or calling ``on_change``, on a change.

        Args:
            globs: Patterns relative to the root.
            on_change: A callable, a task name, or a list of task names.
            ignore: Patterns to exclude.

        Returns:
            The new rule.
        """
        if callable(on_change):
            rule = WatchRule(tuple(globs), callback=on_change, ignore=tuple(ignore))
        else:
            tasks = (on_change,) if isinstance(on_change, str) else tuple(on_change)
            rule = WatchRule(tuple(globs), tasks=tasks, ignore=tuple(ignore))
        return self.add_rule(rule)

    def relative(self, path: str | Path) -> str | None:
        """Return ``path`` relative to the root, or None when outside it."""
        candidate = Path(path)
        for base, target in ((self.root, candidate), (self.root.resolve(), candidate.resolve())):
            try:
                return target.relative_to(base).as_posix()
            except ValueError:
                continue
        return None

    def dispatch(self, path: str | Path) -> list[WatchRule]:
        """Fire every rule matching ``path``.

        Returns:
            The rules that fired, in registration order.
        """
        rel = self.relative(path)
        if rel is None:
            return []
        fired = [rule for rule in self.rules if rule.matches(rel)]
        for rule in fired:
            self._fire(rule, rel)
        return fired

    def _fire(self, rule: WatchRule, rel: str) -> None:
        try:
            if rule.callback is not None:
                rule.callback(self.root / rel)
            else:
                logger.info("%s changed; running %s", rel, ", ".join(rule.tasks))
                self.runner(rule.tasks)
        except Exception as exc:
            logger.error("Watched change to %s failed: %s", rel, exc)

    def start(self) -> None:
        """Start the observer thread."""
        if self._observer is not None:
            return
        self._stopped.clear()
        observer = Observer()
        observer.schedule(_ChangeHandler(self), str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        for rule in self.rules:
            logger.debug("Watching %s", rule)
        logger.info("Watching %s for changes", self.root)

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        self._stopped.set()

    def wait(self) -> None:
        """Block until stop() is called or the process is interrupted."""
        try:
            while not self._stopped.wait(1):
                pass
        except KeyboardInterrupt:
            logger.info("Stopping watcher")
            self.stop()


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, session: WatchSession):
        super().__init__()
        self.session = session

    def on_any_event(self, event):
        if event.is_directory or event.event_type not in _HANDLED_EVENTS:
            return
        paths = [event.src_path]
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.append(dest)
        for path in paths:
            self.session.dispatch(os.fsdecode(path))
