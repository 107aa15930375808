"""Tests for the mutation guard."""

import logging

from cellx.analyzer import analyze
from cellx.guard import check


def _warnings(source):
    return [(w.name, w.lineno) for w in check(analyze(source, cell_id="X"), "X")]


class TestMutationWarnings:
    def test_method_call_on_read_name(self):
        assert _warnings("data.append(1)") == [("data", 1)]

    def test_item_and_attribute_assignment(self):
        source = "cfg['k'] = 1\nobj.attr = 2\ndel table[0]"
        assert _warnings(source) == [("cfg", 1), ("obj", 2), ("table", 3)]

    def test_augmented_item_assignment(self):
        assert _warnings("counts['a'] += 1") == [("counts", 1)]

    def test_inplace_keyword(self):
        assert _warnings("df.dropna(inplace=True)") == [("df", 1)]

    def test_setattr(self):
        assert _warnings("setattr(obj, 'x', 1)") == [("obj", 1)]

    def test_nested_root(self):
        assert _warnings("state.items[0].tags.add('x')") == [("state", 1)]

    def test_inside_function_body(self):
        source = "def f():\n    registry.update(a=1)\nf()"
        assert _warnings(source) == [("registry", 2)]


class TestNoWarnings:
    def test_own_definitions_are_free_to_mutate(self):
        assert _warnings("items = []\nitems.append(1)") == []

    def test_non_mutating_methods(self):
        assert _warnings("n = data.count(1)\nk = cfg.get('k')") == []

    def test_function_local_shadowing(self):
        assert _warnings("def f(data):\n    data.append(1)") == []

    def test_parse_error_has_no_warnings(self):
        assert check(analyze("x = (", cell_id="X"), "X") == []

    def test_rebinding_is_not_mutation(self):
        assert _warnings("y = data + [1]") == []


class TestLogging:
    def test_warning_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="cellx.guard"):
            check(analyze("data.sort()", cell_id="X"), "X")
        assert "X:1" in caplog.text

    def test_str(self):
        (warning,) = check(analyze("data.sort()", cell_id="X"), "X")
        assert str(warning) == "X:1: 'data' is mutated in place by .sort()"
