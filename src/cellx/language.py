"""Language binding — the only place that knows how cell code is parsed and run.

The engine talks to a language through three calls: analyze a source,
check it for mutation hazards, and execute it against a scope. The
default binding is Python itself.

A cell's output slot is the value of its trailing expression statement,
evaluated separately after the body runs; a cell with no trailing
expression outputs None.
"""

from __future__ import annotations

import ast
import functools
from types import CodeType
from typing import Protocol

from cellx import analyzer, guard
from cellx.analyzer import Analysis
from cellx.guard import MutationWarning


class Language(Protocol):
    local_prefix: str

    def analyze(self, source: str, cell_id: str = "") -> Analysis: ...

    def check(self, analysis: Analysis, cell_id: str = "") -> list[MutationWarning]: ...

    def execute(self, source: str, scope: dict[str, object]) -> object: ...


@functools.lru_cache(maxsize=512)
def _compile(source: str) -> tuple[CodeType, CodeType | None]:
    """Compile a cell into (body, trailing expression)."""
    tree = ast.parse(source)
    expr = None
    if tree.body and isinstance(tree.body[-1], ast.Expr):
        last = tree.body.pop()
        expr = compile(ast.Expression(last.value), "<cell>", "eval")
    body = compile(tree, "<cell>", "exec")
    return body, expr


class PythonLanguage:
    """Analyze with ``ast``, run with ``exec``/``eval``."""

    def __init__(self, local_prefix: str = analyzer.LOCAL_PREFIX) -> None:
        self.local_prefix = local_prefix

    def analyze(self, source: str, cell_id: str = "") -> Analysis:
        return analyzer.analyze(source, self.local_prefix, cell_id)

    def check(self, analysis: Analysis, cell_id: str = "") -> list[MutationWarning]:
        return guard.check(analysis, cell_id)

    def execute(self, source: str, scope: dict[str, object]) -> object:
        """Run the cell in ``scope``. Returns the output slot; exceptions propagate."""
        body, expr = _compile(source)
        exec(body, scope)
        if expr is None:
            return None
        return eval(expr, scope)

    def __repr__(self) -> str:
        return f"PythonLanguage(local_prefix={self.local_prefix!r})"
