"""Task graph runner for Sitepipe.

Tasks are named units of build work with declared dependencies. Running a
task first runs its dependencies (concurrently with each other, on one
asyncio loop), then its own action. Each task runs at most once per
invocation, however many dependents share it.

An action may be:
- a plain callable; returning means it is done;
- a callable returning an awaitable; done when the awaitable resolves;
- a callable returning an iterator or async iterator (a stream of work
  items); done once the stream is exhausted.

A task without an action is an alias for its dependencies.

Key classes:
- Task: Declared task.
- TaskGraph: Registry of tasks plus the runner.
- SequenceAction: Action running other tasks in a fixed order.
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
import logging
import time
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from .errors import PipelineError

logger = logging.getLogger(__name__)

_VISITING = 1
_DONE = 2


class TaskFailedError(PipelineError):
    """A task's action raised.

    Attributes:
        task: Name of the task whose action failed.
    """

    def __init__(self, task: str, original_error: Exception):
        self.task = task
        detail = getattr(original_error, "message", None) or str(original_error)
        super().__init__(
            f"Task '{task}' failed: {detail}",
            getattr(original_error, "source_path", None),
            original_error,
        )


class UnknownTaskError(PipelineError):
    """A task name was requested or referenced but never defined."""


class TaskCycleError(PipelineError):
    """The dependency graph contains a cycle.

    Attributes:
        cycle: Task names along the cycle, first name repeated at the end.
    """

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__("Dependency cycle: " + " -> ".join(cycle))


@dataclass
class Task:
    """A named unit of build work.

    Attributes:
        name: Unique task name.
        dependencies: Tasks that must complete before the action starts.
        action: Work to perform, or None for an alias task.
        description: One-line summary shown by ``sitepipe tasks``.
    """

    name: str
    dependencies: tuple[str, ...] = ()
    action: Callable[[], Any] | None = None
    description: str = ""

    def edges(self) -> tuple[str, ...]:
        """Every task this one waits on, including sequenced ones."""
        if isinstance(self.action, SequenceAction):
            return self.dependencies + self.action.task_names
        return self.dependencies


class SequenceAction:
    """Action that runs groups of tasks one after another.

    Each step is a task name or a list of names. Names within a step run
    concurrently; the next step starts only once the whole step finished.
    Sequenced tasks share the invocation of the task that runs them, so a
    task already run (or running) is not started again.
    """

    def __init__(self, steps: Iterable[str | Iterable[str]]):
        self.steps: tuple[tuple[str, ...], ...] = tuple(
            (step,) if isinstance(step, str) else tuple(step) for step in steps
        )

    @property
    def task_names(self) -> tuple[str, ...]:
        return tuple(name for step in self.steps for name in step)

    async def __call__(self) -> None:
        invocation = _current_invocation.get(None)
        if invocation is None:
            raise RuntimeError("Sequenced tasks can only run inside TaskGraph.run()")
        for step in self.steps:
            await invocation.run_all(step)

    def __repr__(self) -> str:
        return f"SequenceAction({list(self.steps)!r})"


class _Invocation:
    """State for one call to TaskGraph.run: a future per started task."""

    def __init__(self, graph: TaskGraph):
        self.graph = graph
        self._futures: dict[str, asyncio.Future] = {}

    async def run_task(self, name: str) -> None:
        future = self._futures.get(name)
        if future is None:
            future = asyncio.ensure_future(self._execute(self.graph.get(name)))
            self._futures[name] = future
        await future

    async def run_all(self, names: Iterable[str]) -> None:
        names = list(names)
        if not names:
            return
        # Siblings are never cancelled; all finish before a failure surfaces.
        results = await asyncio.gather(
            *(self.run_task(name) for name in names), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _execute(self, task: Task) -> None:
        await self.run_all(task.dependencies)
        if task.action is None:
            return
        logger.info("Starting '%s'...", task.name)
        started = time.perf_counter()
        try:
            await _complete(task.action())
        except TaskFailedError:
            raise
        except Exception as exc:
            logger.error("'%s' errored after %s", task.name, _elapsed(started))
            raise TaskFailedError(task.name, exc) from exc
        logger.info("Finished '%s' after %s", task.name, _elapsed(started))


_current_invocation: contextvars.ContextVar[_Invocation] = contextvars.ContextVar(
    "sitepipe_invocation"
)


class TaskGraph:
    """Registry of named tasks and their runner.

    Examples:
        >>> graph = TaskGraph()
        >>> graph.define("clean", action=lambda: print("cleaning"))
        >>> graph.define("build", ["clean"], action=lambda: print("building"))
        >>> graph.run_sync("build")
        cleaning
        building
    """

    def __init__(self):
        self._tasks: dict[str, Task] = {}

    def define(
        self,
        name: str,
        dependencies: Iterable[str] = (),
        action: Callable[[], Any] | None = None,
        description: str = "",
    ) -> Task:
        """Register a task, replacing any previous task of the same name."""
        task = Task(name, tuple(dependencies), action, description)
        self._tasks[name] = task
        return task

    def task(
        self, name: str, dependencies: Iterable[str] = (), description: str = ""
    ) -> Callable[[Callable[[], Any]], Callable[[], Any]]:
        """Decorator form of define(); the docstring doubles as description."""

        def decorator(fn: Callable[[], Any]) -> Callable[[], Any]:
            summary = description or (inspect.getdoc(fn) or "").split("\n")[0]
            self.define(name, dependencies, fn, summary)
            return fn

        return decorator

    def sequence(self, *steps: str | Iterable[str]) -> SequenceAction:
        """Build an action running ``steps`` in order (see SequenceAction)."""
        return SequenceAction(steps)

    def get(self, name: str) -> Task:
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTaskError(f"Task '{name}' is not defined") from None

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def names(self) -> list[str]:
        return sorted(self._tasks)

    def describe(self) -> list[Task]:
        """Return all tasks sorted by name."""
        return [self._tasks[name] for name in self.names()]

    def check(self, *names: str) -> None:
        """Validate the subgraph reachable from ``names``.

        Raises:
            UnknownTaskError: A requested or referenced task is undefined.
            TaskCycleError: The reachable subgraph has a cycle.
        """
        state: dict[str, int] = {}
        path: list[str] = []

        def visit(name: str) -> None:
            if name not in self._tasks:
                referrer = f" (required by '{path[-1]}')" if path else ""
                raise UnknownTaskError(f"Task '{name}' is not defined{referrer}")
            mark = state.get(name)
            if mark == _DONE:
                return
            if mark == _VISITING:
                raise TaskCycleError(path[path.index(name):] + [name])
            state[name] = _VISITING
            path.append(name)
            for dep in self._tasks[name].edges():
                visit(dep)
            path.pop()
            state[name] = _DONE

        for name in names:
            visit(name)

    async def run(self, *names: str) -> None:
        """Run tasks (and their dependencies) to completion.

        Nothing runs if a name is unknown or the graph has a cycle.

        Raises:
            TaskFailedError: An action failed; dependents did not run.
        """
        self.check(*names)
        invocation = _Invocation(self)
        token = _current_invocation.set(invocation)
        try:
            await invocation.run_all(names)
        finally:
            _current_invocation.reset(token)

    def run_sync(self, *names: str) -> None:
        """Blocking wrapper around run() with a fresh event loop."""
        asyncio.run(self.run(*names))


async def _complete(result: Any) -> None:
    """Wait until an action's result signals completion."""
    if inspect.isawaitable(result):
        result = await result
    if hasattr(result, "__aiter__"):
        async for _ in result:
            pass
    elif isinstance(result, Iterator):
        for _ in result:
            # Let sibling tasks interleave between work items.
            await asyncio.sleep(0)


def _elapsed(started: float) -> str:
    seconds = time.perf_counter() - started
    if seconds < 1:
        return f"{seconds * 1000:.0f} ms"
    return f"{seconds:.2f} s"
