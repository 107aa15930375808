"""Tests for Widget and the widget bridge into the engine."""

import threading

import cellx.widget as _widget_mod
from cellx import CellState, Engine, Widget


def _engine():
    return Engine(namespace={"Widget": Widget})


class TestWidget:
    def test_notifies_on_change(self):
        w = Widget(1)
        seen = []
        w.subscribe(lambda widget: seen.append(widget.value))
        w.set(2)
        w.value = 3
        assert seen == [2, 3]

    def test_equal_value_does_not_notify(self):
        w = Widget("a")
        seen = []
        w.subscribe(lambda widget: seen.append(widget.value))
        w.set("a")
        assert seen == []

    def test_unsubscribe(self):
        w = Widget(0)
        seen = []
        unsub = w.subscribe(lambda widget: seen.append(widget.value))
        unsub()
        unsub()
        w.set(1)
        assert seen == []

    def test_background_thread_marshals(self):
        calls = []
        old_sched, old_thread = _widget_mod._scheduler, _widget_mod._scheduler_thread
        _widget_mod._scheduler = lambda f: (calls.append(f), f())
        _widget_mod._scheduler_thread = threading.current_thread()
        try:
            w = Widget(0)
            done = threading.Event()

            def bg():
                w.set(99)
                done.set()

            threading.Thread(target=bg).start()
            done.wait(timeout=2)
            assert len(calls) == 1
            assert w.value == 99
        finally:
            _widget_mod._scheduler = old_sched
            _widget_mod._scheduler_thread = old_thread

    def test_set_scheduler_none_disables_marshal(self):
        old_sched, old_thread = _widget_mod._scheduler, _widget_mod._scheduler_thread
        try:
            _widget_mod.set_scheduler(lambda f: None)
            _widget_mod.set_scheduler(None)
            w = Widget(0)
            w.set(5)
            assert w.value == 5
        finally:
            _widget_mod._scheduler = old_sched
            _widget_mod._scheduler_thread = old_thread


class TestWidgetBridge:
    def test_value_change_reruns_dependents_only(self):
        engine = _engine()
        engine.load([
            ("w", "w = Widget(2, label='n')"),
            ("sq", "sq = w.value ** 2"),
            ("other", "other = 7"),
        ])
        assert engine.get("sq") == 4
        generation_w = engine.cell("w").generation
        generation_other = engine.cell("other").generation

        widget = engine.get("w")
        widget.set(5)

        assert engine.get("sq") == 25
        assert engine.get("w") is widget
        assert engine.cell("w").generation == generation_w
        assert engine.cell("other").generation == generation_other

    def test_rerun_owner_rebinds_new_widget(self):
        engine = _engine()
        engine.load([("w", "w = Widget(1)"), ("x", "x = w.value + 1")])
        old = engine.get("w")
        engine.edit("w", "w = Widget(10)")
        assert engine.get("x") == 11

        old.set(100)  # stale widget no longer drives the graph
        assert engine.get("x") == 11
        engine.get("w").set(20)
        assert engine.get("x") == 21

    def test_widget_set_from_cell_is_queued(self):
        engine = _engine()
        engine.load([
            ("w", "w = Widget(0)"),
            ("echo", "echo = w.value"),
            ("bump", "w.set(3)"),
        ])
        # "bump" runs after "echo" in the same pass; the change re-runs "echo".
        assert engine.get("echo") == 3
        assert engine.cell("bump").state is CellState.OK
        # Widget.set is the sanctioned way to change shared state.
        assert engine.diagnostics.mutation_warnings() == []

    def test_widget_changes_batched(self):
        engine = _engine()
        engine.load([("a", "a = Widget(1)"), ("b", "b = Widget(2)"), ("s", "s = a.value + b.value")])
        start = engine.generation
        with engine.transaction():
            engine.get("a").set(10)
            engine.get("b").set(20)
        assert engine.generation == start + 1
        assert engine.get("s") == 30

    def test_deleted_owner_unbinds(self):
        engine = _engine()
        engine.load([("w", "w = Widget(1)"), ("x", "x = 5")])
        widget = engine.get("w")
        engine.delete("w")
        generation = engine.generation
        widget.set(2)
        assert engine.generation == generation

    def test_widget_set_survives_supersession(self):
        gate, started = threading.Event(), threading.Event()
        engine = Engine(namespace={"Widget": Widget, "gate": gate, "started": started})
        engine.load([("o", "w = Widget(1)"), ("d", "d = w.value * 10"), ("x", "x = 0"), ("z", "z = 0")])

        old = engine.edit("x", "w.set(5)\nstarted.set()\ngate.wait(5)\nx = 1", wait=False)
        assert started.wait(timeout=5)
        # A newer pass takes over while "x" still holds the queued change.
        new = engine.edit("z", "z = 1", wait=False)
        gate.set()
        assert old.wait(timeout=5).superseded
        assert new.wait(timeout=5) is not None

        assert engine.get("w").value == 5
        assert engine.get("d") == 50
        assert not engine.running
