"""Mutation guard — flag in-place mutation of names a cell only reads.

The graph only sees names, so mutating an object owned by another cell
changes state behind the scheduler's back: dependents of that object are
never re-run. This module surfaces those sites as warnings. It does not
create edges and never tracks mutation at runtime.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass

from cellx.analyzer import Analysis, ScopeVisitor, _Binder

logger = logging.getLogger("cellx.guard")

MUTATING_METHODS = frozenset({
    # list
    "append", "extend", "insert", "pop", "remove", "clear", "sort", "reverse",
    # dict
    "update", "setdefault", "popitem",
    # set
    "add", "discard", "difference_update", "intersection_update",
    "symmetric_difference_update",
    # dunder forms
    "__setitem__", "__delitem__", "__setattr__", "__delattr__", "__iadd__",
})


@dataclass(frozen=True)
class MutationWarning:
    cell_id: str
    name: str
    lineno: int
    description: str

    def __str__(self) -> str:
        return f"{self.cell_id}:{self.lineno}: {self.description}"


def _root_name(node: ast.AST) -> str | None:
    """`a.b[0].c` -> 'a'."""
    while isinstance(node, (ast.Attribute, ast.Subscript)):
        node = node.value
    return node.id if isinstance(node, ast.Name) else None


class _MutationVisitor(ScopeVisitor):
    def __init__(self, top_level: set[str], reads: frozenset[str], cell_id: str) -> None:
        super().__init__(top_level)
        self._reads = reads
        self._cell_id = cell_id
        self.warnings: list[MutationWarning] = []

    def _flag(self, root: str | None, node: ast.AST, description: str) -> None:
        if root is None or root not in self._reads or not self.is_global_read(root):
            return
        self.warnings.append(MutationWarning(self._cell_id, root, node.lineno, description))

    def visit_Call(self, node: ast.Call) -> None:
        func = node.func
        if isinstance(func, ast.Attribute):
            root = _root_name(func.value)
            if func.attr in MUTATING_METHODS:
                self._flag(root, node, f"'{root}' is mutated in place by .{func.attr}()")
            elif any(
                kw.arg == "inplace" and isinstance(kw.value, ast.Constant) and kw.value.value is True
                for kw in node.keywords
            ):
                self._flag(root, node, f"'{root}' is mutated in place by .{func.attr}(inplace=True)")
        elif isinstance(func, ast.Name) and func.id in ("setattr", "delattr") and node.args:
            root = _root_name(node.args[0])
            self._flag(root, node, f"'{root}' is mutated by {func.id}()")
        self.generic_visit(node)

    def _check_targets(self, targets: list[ast.expr], node: ast.AST, verb: str) -> None:
        for target in targets:
            if isinstance(target, (ast.Tuple, ast.List)):
                self._check_targets(list(target.elts), node, verb)
            elif isinstance(target, ast.Starred):
                self._check_targets([target.value], node, verb)
            elif isinstance(target, ast.Subscript):
                root = _root_name(target)
                self._flag(root, node, f"item of '{root}' is {verb}")
            elif isinstance(target, ast.Attribute):
                root = _root_name(target)
                self._flag(root, node, f"attribute of '{root}' is {verb}")

    def visit_Assign(self, node: ast.Assign) -> None:
        self._check_targets(node.targets, node, "assigned")
        self.generic_visit(node)

    def visit_AugAssign(self, node: ast.AugAssign) -> None:
        self._check_targets([node.target], node, "updated in place")
        self.generic_visit(node)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:
        if node.value is not None:
            self._check_targets([node.target], node, "assigned")
        self.generic_visit(node)

    def visit_Delete(self, node: ast.Delete) -> None:
        self._check_targets(node.targets, node, "deleted")
        self.generic_visit(node)


def check(analysis: Analysis, cell_id: str = "") -> list[MutationWarning]:
    """Return mutation warnings for an analyzed cell, in source order."""
    if analysis.tree is None or not analysis.reads:
        return []
    binder = _Binder.scan(analysis.tree.body)
    visitor = _MutationVisitor(binder.bound | binder.handler_names, analysis.reads, cell_id)
    for stmt in analysis.tree.body:
        visitor.visit(stmt)
    for warning in visitor.warnings:
        logger.warning("Mutation of read dependency: %s", warning)
    return sorted(visitor.warnings, key=lambda w: w.lineno)
