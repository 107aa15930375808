"""Engine — the public face of cellx.

Owns the arena, graph, execution context and scheduler, and turns document
operations (load, insert, edit, delete, reconcile, widget changes) into
scheduling passes.

Every structural change goes through the same steps under the engine lock:
re-analyze the touched cells, update the graph incrementally, collect the
cells whose conflict/cycle status changed, then start a pass over the
changed set. Starting a pass supersedes any pass still in flight; the new
pass absorbs the cells the old one had not finished.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, Mapping

from cellx._anchor import Arena, CellState
from cellx._tracking import Batch, current_run
from cellx.analyzer import LOCAL_PREFIX, Analysis
from cellx.cell import Cell
from cellx.context import ExecutionContext
from cellx.diagnostics import Diagnostics
from cellx.errors import CellError, DuplicateCellError
from cellx.events import CellEvent, EventStream
from cellx.graph import Graph
from cellx.guard import MutationWarning
from cellx.language import Language, PythonLanguage
from cellx.scheduler import Pass, PassResult, Scheduler
from cellx.widget import Widget

logger = logging.getLogger("cellx.engine")

Disposer = Callable[[], None]


class PassHandle:
    """Handle for a pass running on a daemon thread.

    Returned by engine operations called with ``wait=False``.
    """

    __slots__ = ("_engine", "_pass", "_thread", "_result", "_exc")

    def __init__(self, engine: Engine, pass_: Pass) -> None:
        self._engine = engine
        self._pass = pass_
        self._result: PassResult | None = None
        self._exc: BaseException | None = None
        self._thread = threading.Thread(target=self._run, daemon=True, name=f"cellx-pass-{pass_.generation}")
        self._thread.start()

    def _run(self) -> None:
        try:
            self._result = self._engine._execute(self._pass)
        except BaseException as exc:
            self._exc = exc

    @property
    def generation(self) -> int:
        return self._pass.generation

    @property
    def done(self) -> bool:
        return not self._thread.is_alive()

    def wait(self, timeout: float | None = None) -> PassResult | None:
        """Block until the pass ends. Returns None on timeout."""
        self._thread.join(timeout)
        if self._thread.is_alive():
            return None
        if self._exc is not None:
            raise self._exc
        return self._result

    @property
    def result(self) -> PassResult | None:
        return self._result

    def cancel(self) -> bool:
        """Cancel every unfinished cell of this pass."""
        with self._engine._lock:
            return self._pass.cancel_all()

    def __repr__(self) -> str:
        state = "done" if self.done else "running"
        return f"PassHandle(generation={self.generation}, {state})"


class Engine:
    """Reactive cell execution engine.

    Usage:
        engine = Engine()
        engine.load([("a", "a = 1"), ("b", "b = a + 1")])
        engine.get("b")          # 2
        engine.edit("a", "a = 10")
        engine.get("b")          # 11

    ``namespace`` seeds externally supplied values that no cell owns.
    ``local_prefix`` marks cell-private names (ignored when ``language`` is
    given; the language decides).
    """

    def __init__(
        self,
        language: Language | None = None,
        namespace: Mapping[str, object] | None = None,
        local_prefix: str = LOCAL_PREFIX,
    ) -> None:
        self._language = language if language is not None else PythonLanguage(local_prefix)
        self._arena = Arena()
        self._graph = Graph()
        self._context = ExecutionContext(self._arena, namespace)
        self._lock = self._context.lock
        self._scheduler = Scheduler(self._arena, self._graph, self._context, self._language, self._emit)
        self._passes: list[Pass] = []
        self._batch = Batch()
        self._widget_disposers: dict[int, list[Disposer]] = {}
        self.events: EventStream[CellEvent] = EventStream()
        self.diagnostics = Diagnostics(self)

    # --- Queries ---

    @property
    def language(self) -> Language:
        return self._language

    @property
    def namespace(self) -> Mapping[str, object]:
        return self._context.namespace

    @property
    def generation(self) -> int:
        return self._context.generation

    def get(self, name: str) -> object:
        """Read a global. Raises KeyError if absent, StaleSymbolError if invalidated."""
        return self._context.lookup(name)

    def cell(self, cell_id: str) -> Cell:
        with self._lock:
            return Cell(self._arena, self._arena.node(cell_id))

    def cells(self) -> list[Cell]:
        with self._lock:
            return [Cell(self._arena, n) for n in self._arena.order]

    def owner(self, name: str) -> str | None:
        """Id of the cell owning ``name``, or None if unowned or conflicted."""
        with self._lock:
            node = self._graph.owner(name)
            return self._arena.ids[node] if node is not None else None

    @property
    def running(self) -> bool:
        with self._lock:
            return any(not p.finished for p in self._passes)

    def __contains__(self, cell_id: str) -> bool:
        return cell_id in self._arena.nodes

    def __len__(self) -> int:
        return len(self._arena)

    # --- Document operations ---

    def load(self, cells: Iterable[tuple[str, str]], *, wait: bool = True):
        """Replace the document with ``cells`` and run everything."""
        cells = list(cells)
        _check_unique(cells)
        with self._lock:
            for node in list(self._arena.order):
                self._remove_node(node)
            for cell_id, source in cells:
                self._insert_node(cell_id, source)
            changed = set(self._arena.order)
        logger.info("Loaded %d cells", len(cells))
        return self._dispatch(changed, wait=wait)

    def reconcile(self, cells: Iterable[tuple[str, str]], *, wait: bool = True):
        """Bring the document in line with ``cells``, re-running only what changed.

        New ids are inserted, missing ids deleted, changed sources edited and
        the document order updated, all in one pass.
        """
        cells = list(cells)
        _check_unique(cells)
        wanted = dict(cells)
        counts = {"new": 0, "edited": 0, "deleted": 0}

        def mutate() -> set[int]:
            touched: set[int] = set()
            arena = self._arena
            for cell_id in [cid for cid in arena.nodes if cid not in wanted]:
                touched |= self._remove_node(arena.nodes[cell_id])
                counts["deleted"] += 1
            for position, (cell_id, source) in enumerate(cells):
                if cell_id not in arena.nodes:
                    touched.add(self._insert_node(cell_id, source, position))
                    counts["new"] += 1
                elif arena.sources[arena.nodes[cell_id]] != source:
                    touched |= self._edit_node(arena.nodes[cell_id], source)
                    counts["edited"] += 1
            for position, (cell_id, _) in enumerate(cells):
                arena.move(arena.nodes[cell_id], position)
            return touched

        with self._lock:
            changed = self._restructure(mutate)
        logger.info(
            "Reconciled: %d new, %d edited, %d deleted",
            counts["new"], counts["edited"], counts["deleted"],
        )
        return self._dispatch(changed, wait=wait)

    def insert(self, cell_id: str, source: str, position: int | None = None, *, wait: bool = True):
        with self._lock:
            changed = self._restructure(lambda: {self._insert_node(cell_id, source, position)})
        return self._dispatch(changed, wait=wait)

    def edit(self, cell_id: str, source: str, *, wait: bool = True):
        """Replace a cell's source and re-run it with everything downstream."""
        with self._lock:
            node = self._arena.node(cell_id)
            changed = self._restructure(lambda: self._edit_node(node, source))
        return self._dispatch(changed, wait=wait)

    def delete(self, cell_id: str, *, wait: bool = True):
        """Remove a cell. Its symbols become unowned; former readers re-run."""
        with self._lock:
            node = self._arena.node(cell_id)
            changed = self._restructure(lambda: self._remove_node(node))
        return self._dispatch(changed, wait=wait)

    def move(self, cell_id: str, position: int) -> None:
        """Change document position. Affects tie-breaking only; nothing re-runs."""
        with self._lock:
            self._arena.move(self._arena.node(cell_id), position)

    def run(self, cell_ids: Iterable[str] | None = None, *, wait: bool = True):
        """Re-run cells (all of them by default) and their dependents."""
        with self._lock:
            if cell_ids is None:
                changed = set(self._arena.order)
            else:
                changed = {self._arena.node(cid) for cid in cell_ids}
        return self._dispatch(changed, wait=wait)

    def provide(self, name: str, value: object, *, wait: bool = True):
        """Set an externally supplied value and re-run the cells reading it.

        Names owned by a cell cannot be provided from outside.
        """
        with self._lock:
            if self._graph.claimants(name):
                raise ValueError(f"'{name}' is defined by a cell")
            self._context.provide(name, value)
            changed = {n for n in self._arena.order if name in self._graph.reads(n)}
        return self._dispatch(changed, wait=wait)

    # --- Cancellation ---

    def cancel(self, cell_id: str | None = None) -> bool:
        """Cancel a cell of the in-flight pass (the running one by default)."""
        with self._lock:
            node = self._arena.node(cell_id) if cell_id is not None else None
            for pass_ in reversed(self._passes):
                if not pass_.finished and pass_.cancel(node):
                    logger.info("Cancelled %s in pass %d", cell_id or "running cell", pass_.generation)
                    return True
            return False

    def interrupt(self) -> bool:
        """Cancel every unfinished cell of every in-flight pass."""
        with self._lock:
            cancelled = [p.cancel_all() for p in self._passes if not p.finished]
            return any(cancelled)

    # --- Batching ---

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Collect edits and widget changes, then run them as one pass.

        Operations inside the block return None instead of a result.
        """
        with self._lock:
            self._batch.begin()
        try:
            yield
        finally:
            with self._lock:
                flushed = self._batch.end()
            if flushed is not None and flushed[0]:
                self._dispatch(*flushed)

    def dispose(self) -> None:
        """Interrupt running passes and drop widget and event subscriptions."""
        self.interrupt()
        with self._lock:
            for node in list(self._widget_disposers):
                self._unbind_widgets(node)
        self.events.dispose()

    # --- Structure (lock held) ---

    def _analyze(self, cell_id: str, source: str) -> tuple[Analysis, list[MutationWarning]]:
        """Analyze and check a source. Called before the arena is touched."""
        analysis = self._language.analyze(source, cell_id)
        warnings = self._language.check(analysis, cell_id) if analysis.ok else []
        return analysis, warnings

    def _insert_node(self, cell_id: str, source: str, position: int | None = None) -> int:
        if cell_id in self._arena.nodes:
            raise DuplicateCellError(cell_id)
        analysis, warnings = self._analyze(cell_id, source)
        node = self._arena.new(cell_id, source, position)
        self._arena.analyses[node] = analysis
        self._arena.warnings[node] = warnings
        self._graph.add(node, analysis.defines, analysis.reads)
        return node

    def _edit_node(self, node: int, source: str) -> set[int]:
        analysis, warnings = self._analyze(self._arena.ids[node], source)
        former = self._graph.consumers(node)
        self._arena.sources[node] = source
        self._arena.analyses[node] = analysis
        self._arena.warnings[node] = warnings
        self._graph.update(node, analysis.defines, analysis.reads)
        # Readers that lost this producer re-run against the new state.
        return {node} | former

    def _remove_node(self, node: int) -> set[int]:
        former = self._graph.consumers(node)
        self._unbind_widgets(node)
        self._context.discard(node)
        self._graph.remove(node)
        self._arena.drop(node)
        return former

    def _broken(self) -> dict[int, CellError | None]:
        """Current conflict/cycle errors, keyed by node."""
        nodes: set[int] = set()
        for claimants in self._graph.conflicts().values():
            nodes |= claimants
        for cycle in self._graph.cycles():
            nodes |= cycle
        return {n: self._scheduler.structural_error(n) for n in nodes}

    def _restructure(self, mutate: Callable[[], set[int]]) -> set[int]:
        """Apply a structural change; return every cell that must re-run.

        Besides what ``mutate`` reports, that includes cells whose conflict
        or cycle status changed as a side effect.
        """
        before = self._broken()
        touched = mutate()
        after = self._broken()
        flipped = {n for n in before.keys() | after.keys() if before.get(n) != after.get(n)}
        return {n for n in touched | flipped if n in self._arena}

    # --- Passes ---

    def _dispatch(self, changed: set[int], skip: Iterable[int] = (), *, wait: bool = True):
        skip = set(skip)
        with self._lock:
            if self._batch.active:
                self._batch.add(set(changed), skip)
                return None
            pass_ = self._start(changed, skip)
        if wait:
            return self._execute(pass_)
        return PassHandle(self, pass_)

    def _start(self, changed: set[int], skip: set[int]) -> Pass:
        """Plan a new pass, superseding any in flight (lock held)."""
        generation = self._context.begin_pass()
        explicit = set(changed) - skip
        carried: set[int] = set()
        carried_skip: set[int] = set()
        queued: set[int] = set()
        for old in self._passes:
            # A superseded pass already handed its cells over once.
            if not old.finished and not old.superseded:
                old.superseded = True
                unfinished = old.unfinished()
                carried |= unfinished
                carried_skip |= old.skip & unfinished
                # Widget changes its cells already made move to the new pass.
                queued |= old.queued
                old.queued = set()
                logger.info("Pass %d superseded by %d", old.generation, generation)
        skip = (skip | carried_skip | queued) - explicit - (carried - carried_skip)
        pass_ = self._scheduler.plan(set(changed) | carried | queued, generation, skip)
        self._passes = [p for p in self._passes if not p.finished] + [pass_]
        return pass_

    def _execute(self, pass_: Pass) -> PassResult:
        result = self._scheduler.execute(pass_)
        with self._lock:
            self._passes = [p for p in self._passes if p is not pass_]
            queued, pass_.queued = pass_.queued, set()
        if queued:
            # Widget changes made by cell code during this pass.
            self._dispatch(queued, skip=queued)
        return result

    # --- Widgets ---

    def _widget_changed(self, node: int) -> None:
        with self._lock:
            if node not in self._arena:
                return
            run = current_run.get()
            if run is not None and run[0] in self._passes:
                run[0].queued.add(node)
                return
        self._dispatch({node}, skip={node})

    def _bind_widgets(self, node: int) -> None:
        with self._lock:
            self._unbind_widgets(node)
            disposers = []
            for name in sorted(self._context.published(node)):
                value = self._context.namespace.get(name)
                if isinstance(value, Widget):
                    disposers.append(value.subscribe(lambda _w, node=node: self._widget_changed(node)))
            if disposers:
                self._widget_disposers[node] = disposers

    def _unbind_widgets(self, node: int) -> None:
        for dispose in self._widget_disposers.pop(node, ()):
            dispose()

    # --- Events ---

    def _emit(self, event: CellEvent) -> None:
        node = self._arena.nodes.get(event.cell_id)
        if node is not None:
            if event.state is CellState.OK:
                self._bind_widgets(node)
            elif event.state is not CellState.RUNNING:
                with self._lock:
                    self._unbind_widgets(node)
        try:
            self.events.emit(event)
        except Exception:
            logger.exception("Event subscriber failed for %s", event.cell_id)

    def __repr__(self) -> str:
        return f"Engine({len(self._arena)} cells, generation={self.generation})"


def _check_unique(cells: list[tuple[str, str]]) -> None:
    seen: set[str] = set()
    for cell_id, _ in cells:
        if cell_id in seen:
            raise DuplicateCellError(cell_id)
        seen.add(cell_id)
