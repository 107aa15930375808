"""Scheduler — decide what re-runs after a change, and run it in order.

A pass starts from the directly changed cells, extends to everything
downstream of them, topologically sorts that set (ties broken by document
position) and executes it strictly in that order.

Failures are cell-scoped. A cell that cannot run (parse error, conflict,
cycle, runtime error, cancellation) fails; every cell in the pass that
depends on a failed cell is blocked instead of being run against missing
or stale inputs. Everything else keeps running.

Cell bodies run outside the engine lock. Before and after each cell the
pass checks whether a newer generation has started; if so it stops and
its in-flight result is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from cellx._anchor import Arena, CellState
from cellx._tracking import current_run
from cellx.context import ExecutionContext
from cellx.errors import (
    BlockedError,
    Cancelled,
    CellError,
    CellRuntimeError,
    ConflictError,
    CycleError,
    SupersededRun,
)
from cellx.events import CellEvent
from cellx.graph import Graph
from cellx.language import Language

logger = logging.getLogger("cellx.scheduler")


@dataclass
class PassResult:
    """What one scheduling pass did, by cell id."""

    generation: int
    order: list[str] = field(default_factory=list)
    executed: list[str] = field(default_factory=list)
    errored: list[str] = field(default_factory=list)
    blocked: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    superseded: bool = False

    @property
    def ok(self) -> bool:
        return not (self.errored or self.blocked or self.cancelled or self.superseded)


class Pass:
    """Mutable bookkeeping for one generation."""

    def __init__(
        self,
        generation: int,
        order: list[int],
        cycles: list[int],
        skip: Iterable[int] = (),
    ) -> None:
        self.generation = generation
        self.order = order
        self.cycles = cycles
        self.closure = frozenset(order) | frozenset(cycles)
        self.skip = frozenset(skip)
        self.done: set[int] = set()
        self.failed: dict[int, int] = {}  # node -> node that caused the failure
        self.cancelled: set[int] = set()
        self.queued: set[int] = set()  # widget owners changed by cell code
        self.running: int | None = None
        self.superseded = False
        self.finished = False
        self.result = PassResult(generation)

    def is_cancelled(self, node: int) -> bool:
        return node in self.cancelled

    def unfinished(self) -> set[int]:
        return set(self.closure) - self.done

    def cancel(self, node: int | None = None) -> bool:
        """Cancel ``node`` (or the running cell). False if nothing to cancel."""
        if node is None:
            node = self.running
        if node is None or node in self.done or node not in self.closure:
            return False
        self.cancelled.add(node)
        return True

    def cancel_all(self) -> bool:
        remaining = self.unfinished()
        self.cancelled |= remaining
        return bool(remaining)

    def __repr__(self) -> str:
        return f"Pass(generation={self.generation}, cells={len(self.closure)}, done={len(self.done)})"


class Scheduler:
    """Plans and executes passes over the arena's cells."""

    def __init__(
        self,
        arena: Arena,
        graph: Graph,
        context: ExecutionContext,
        language: Language,
        emit: Callable[[CellEvent], None],
    ) -> None:
        self._arena = arena
        self._graph = graph
        self._context = context
        self._language = language
        self._emit = emit

    # --- Structural errors ---

    def structural_error(self, node: int) -> CellError | None:
        """Parse, conflict or cycle error that makes ``node`` unschedulable."""
        arena, graph = self._arena, self._graph
        cell_id = arena.ids[node]
        analysis = arena.analyses.get(node)
        if analysis is not None and analysis.error is not None:
            return analysis.error
        names = graph.conflicting_names(node)
        if names:
            name = names[0]
            cells = tuple(arena.ids[n] for n in arena.sorted(graph.claimants(name)))
            return ConflictError(cell_id, name, cells)
        cycle = graph.cycle_of(node)
        if cycle is not None:
            return CycleError(cell_id, tuple(arena.ids[n] for n in arena.sorted(cycle)))
        return None

    # --- Planning ---

    def closure(self, changed: Iterable[int]) -> set[int]:
        """Changed cells, everything downstream, and any never-run inputs."""
        arena, graph = self._arena, self._graph
        closure = {n for n in changed if n in arena}
        closure |= graph.descendants(closure)
        while True:
            missing = {
                n for n in graph.ancestors(closure)
                if arena.states[n] is CellState.STALE and n not in closure
            }
            if not missing:
                return closure
            closure |= missing | graph.descendants(missing)

    def plan(self, changed: Iterable[int], generation: int, skip: Iterable[int] = ()) -> Pass:
        arena, graph = self._arena, self._graph
        closure = self.closure(changed)
        cycles = arena.sorted(n for n in closure if graph.cycle_of(n) is not None)
        order = graph.topological_order(closure - set(cycles), key=arena.position)
        pass_ = Pass(generation, order, cycles, skip)
        pass_.result.order = [arena.ids[n] for n in order]
        return pass_

    # --- Execution ---

    def _blocker(self, pass_: Pass, node: int) -> int | None:
        arena = self._arena
        for producer in arena.sorted(self._graph.producers(node)):
            if producer in pass_.failed:
                return pass_.failed[producer]
            if producer not in pass_.closure and (
                arena.states[producer] in (CellState.ERROR, CellState.BLOCKED)
                or self.structural_error(producer) is not None
            ):
                return producer
        return None

    def _fail(self, pass_: Pass, node: int, state: CellState, error: CellError, cause: int) -> CellEvent:
        self._context.invalidate(node)
        self._context.set_state(node, state, error=error, generation=pass_.generation)
        pass_.failed[node] = cause
        pass_.done.add(node)
        cell_id = self._arena.ids[node]
        if isinstance(error, Cancelled):
            pass_.result.cancelled.append(cell_id)
        elif state is CellState.BLOCKED:
            pass_.result.blocked.append(cell_id)
        else:
            pass_.result.errored.append(cell_id)
        return self._event(node, pass_.generation)

    def _event(self, node: int, generation: int) -> CellEvent:
        arena = self._arena
        return CellEvent(
            arena.ids[node],
            arena.states[node],
            generation,
            arena.outputs[node],
            arena.errors[node],
        )

    def _prepare(self, pass_: Pass, node: int) -> tuple[CellEvent | None, tuple[str, dict] | None]:
        """Decide under the lock whether ``node`` runs.

        Returns (event to emit, (source, scope) if the cell should run).
        """
        arena = self._arena
        if node not in arena:
            pass_.done.add(node)
            return None, None
        error = self.structural_error(node)
        if error is not None:
            return self._fail(pass_, node, CellState.ERROR, error, node), None
        blocker = self._blocker(pass_, node)
        if blocker is not None:
            error = BlockedError(arena.ids[node], arena.ids[blocker])
            return self._fail(pass_, node, CellState.BLOCKED, error, blocker), None
        if pass_.is_cancelled(node):
            return self._fail(pass_, node, CellState.STALE, Cancelled(arena.ids[node]), node), None
        if node in pass_.skip:
            pass_.done.add(node)
            return None, None
        scope = self._context.scope_for(arena.analyses[node].reads)
        pass_.running = node
        self._context.set_state(node, CellState.RUNNING, generation=pass_.generation)
        return self._event(node, pass_.generation), (arena.sources[node], scope)

    def execute(self, pass_: Pass) -> PassResult:
        """Run a planned pass to completion, cancellation or supersession."""
        arena, context = self._arena, self._context
        lock = context.lock
        logger.info("Pass %d: %d cells scheduled", pass_.generation, len(pass_.closure))

        events: list[CellEvent] = []
        with lock:
            if context.is_current(pass_.generation):
                for node in pass_.cycles:
                    if node in arena:
                        events.append(
                            self._fail(pass_, node, CellState.ERROR, self.structural_error(node), node)
                        )
        self._publish_events(events)

        for node in pass_.order:
            with lock:
                if not context.is_current(pass_.generation):
                    pass_.superseded = True
                    break
                event, run = self._prepare(pass_, node)
            if event is not None:
                self._publish_events([event])
            if run is None:
                continue

            source, scope = run
            cell_id = arena.ids[node]
            output, error = self._run_cell(pass_, node, cell_id, source, scope)

            with lock:
                pass_.running = None
                if not context.is_current(pass_.generation):
                    stale = SupersededRun(cell_id, pass_.generation, context.generation)
                    logger.debug("Dropping result: %s", stale)
                    pass_.superseded = True
                    break
                if node not in arena:
                    # Deleted while it ran.
                    pass_.done.add(node)
                    continue
                if pass_.is_cancelled(node):
                    event = self._fail(pass_, node, CellState.STALE, Cancelled(cell_id), node)
                elif error is not None:
                    pass_.result.executed.append(cell_id)
                    event = self._fail(pass_, node, CellState.ERROR, error, node)
                else:
                    pass_.result.executed.append(cell_id)
                    context.publish(node, pass_.generation, scope, arena.analyses[node].defines)
                    context.set_state(node, CellState.OK, output=output, generation=pass_.generation)
                    pass_.done.add(node)
                    event = self._event(node, pass_.generation)
            self._publish_events([event])

        pass_.finished = True
        result = pass_.result
        result.superseded = pass_.superseded
        logger.info(
            "Pass %d %s: %d executed, %d errored, %d blocked",
            pass_.generation,
            "superseded" if result.superseded else "finished",
            len(result.executed),
            len(result.errored),
            len(result.blocked),
        )
        return result

    def _run_cell(self, pass_: Pass, node: int, cell_id: str, source: str, scope: dict) -> tuple[object, CellError | None]:
        token = current_run.set((pass_, node))
        try:
            return self._language.execute(source, scope), None
        except Exception as exc:
            return None, CellRuntimeError(cell_id, exc)
        finally:
            current_run.reset(token)

    def _publish_events(self, events: list[CellEvent]) -> None:
        for event in events:
            self._emit(event)
