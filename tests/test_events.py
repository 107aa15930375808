"""Tests for EventStream and the cell events an engine emits."""

import time

from cellx import CellEvent, CellState, Engine, EventStream


def _event(cell_id, state=CellState.OK, generation=1, output=None):
    return CellEvent(cell_id, state, generation, output)


class TestEmitSubscribe:
    def test_subscribe_receives_emitted_values(self):
        stream = EventStream()
        received = []
        stream.subscribe(received.append)
        stream.emit(_event("a"))
        stream.emit(_event("b"))
        assert [e.cell_id for e in received] == ["a", "b"]

    def test_unsubscribe_idempotent(self):
        stream = EventStream()
        received = []
        unsub = stream.subscribe(received.append)
        unsub()
        unsub()
        stream.emit(_event("a"))
        assert received == []


class TestOperators:
    def test_for_cell(self):
        stream = EventStream()
        received = []
        stream.for_cell("b").subscribe(received.append)
        stream.emit(_event("a"))
        stream.emit(_event("b", output=2))
        assert [(e.cell_id, e.output) for e in received] == [("b", 2)]

    def test_filter_then_map(self):
        stream = EventStream()
        outputs = stream.filter(lambda e: e.state is CellState.OK).map(lambda e: e.output)
        received = []
        outputs.subscribe(received.append)
        stream.emit(_event("a", CellState.RUNNING))
        stream.emit(_event("a", output=42))
        assert received == [42]

    def test_debounce_emits_last_of_burst(self):
        stream = EventStream()
        received = []
        stream.debounce(0.05).subscribe(received.append)
        for generation in range(5):
            stream.emit(_event("a", generation=generation))
        time.sleep(0.2)
        assert [e.generation for e in received] == [4]


class TestDispose:
    def test_dispose_stops_emission(self):
        stream = EventStream()
        received = []
        stream.subscribe(received.append)
        stream.dispose()
        stream.emit(_event("a"))
        assert received == []
        assert stream.disposed

    def test_dispose_tears_down_children(self):
        stream = EventStream()
        child = stream.for_cell("a")
        grandchild = child.map(lambda e: e.output)
        stream.dispose()
        assert child.disposed
        assert grandchild.disposed

    def test_child_dispose_detaches_from_parent(self):
        stream = EventStream()
        child = stream.for_cell("a")
        child.dispose()
        assert child not in stream._children


class TestEngineEvents:
    def test_error_event_carries_error(self):
        engine = Engine()
        seen = []
        engine.events.filter(lambda e: e.state is CellState.ERROR).subscribe(seen.append)
        engine.load([("A", "a = 1 / 0")])
        assert len(seen) == 1
        assert seen[0].cell_id == "A"
        assert seen[0].error is engine.cell("A").error

    def test_blocked_event_after_error(self):
        engine = Engine()
        seen = []
        engine.events.for_cell("B").subscribe(lambda e: seen.append(e.state))
        engine.load([("A", "a = 1 / 0"), ("B", "b = a")])
        assert seen == [CellState.BLOCKED]

    def test_events_carry_pass_generation(self):
        engine = Engine()
        seen = []
        engine.events.subscribe(seen.append)
        result = engine.load([("A", "a = 1\na")])
        assert {e.generation for e in seen} == {result.generation}
        assert seen[-1].output == 1

    def test_dispose_engine_stops_events(self):
        engine = Engine()
        seen = []
        engine.events.subscribe(seen.append)
        engine.dispose()
        engine.load([("A", "a = 1")])
        assert seen == []
        assert engine.get("a") == 1
