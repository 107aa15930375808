"""Static analysis — which global names a cell defines and which it reads.

Works on the syntax tree only; nothing is executed. Python's scoping rules
decide what is a global read: a name loaded inside a function body is a
read only if no enclosing function scope binds it and the cell's own top
level does not define it.

Names starting with the local prefix (``_`` by default) are private to the
cell. They are reported separately and never take part in the graph.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass, field

from cellx.errors import ParseError

LOCAL_PREFIX = "_"

_COMPREHENSIONS = (ast.ListComp, ast.SetComp, ast.GeneratorExp, ast.DictComp)
_FUNCTIONS = (ast.FunctionDef, ast.AsyncFunctionDef)


@dataclass(frozen=True)
class Analysis:
    """Result of analyzing one cell."""

    defines: frozenset[str] = frozenset()
    reads: frozenset[str] = frozenset()
    locals: frozenset[str] = frozenset()
    error: ParseError | None = None
    tree: ast.Module | None = field(default=None, compare=False, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None


class _Binder(ast.NodeVisitor):
    """Collect the names bound directly in one scope.

    Does not descend into nested function, lambda or class bodies; those are
    scopes of their own. Comprehensions are only searched for walrus
    targets, which bind in the enclosing scope.
    """

    def __init__(self) -> None:
        self.bound: set[str] = set()
        self.handler_names: set[str] = set()
        self.globals: set[str] = set()
        self.nonlocals: set[str] = set()

    @classmethod
    def scan(cls, body: list[ast.stmt]) -> _Binder:
        binder = cls()
        for stmt in body:
            binder.visit(stmt)
        return binder

    def visit_Name(self, node: ast.Name) -> None:
        if isinstance(node.ctx, ast.Store):
            self.bound.add(node.id)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:
        # A bare annotation binds nothing at runtime.
        if node.value is not None:
            self.visit(node.target)
            self.visit(node.value)

    def visit_FunctionDef(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        self.bound.add(node.name)
        for expr in node.decorator_list:
            self.visit(expr)
        for default in node.args.defaults + [d for d in node.args.kw_defaults if d is not None]:
            self.visit(default)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self.bound.add(node.name)
        for expr in node.decorator_list + node.bases + [k.value for k in node.keywords]:
            self.visit(expr)

    def visit_Lambda(self, node: ast.Lambda) -> None:
        for default in node.args.defaults + [d for d in node.args.kw_defaults if d is not None]:
            self.visit(default)

    def _visit_comprehension(self, node: ast.AST) -> None:
        for child in ast.walk(node):
            if isinstance(child, ast.NamedExpr) and isinstance(child.target, ast.Name):
                self.bound.add(child.target.id)

    visit_ListComp = visit_SetComp = visit_GeneratorExp = visit_DictComp = _visit_comprehension

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            self.bound.add(alias.asname or alias.name.split(".")[0])

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        for alias in node.names:
            if alias.name != "*":
                self.bound.add(alias.asname or alias.name)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.name:
            self.handler_names.add(node.name)
        self.generic_visit(node)

    def visit_MatchAs(self, node: ast.MatchAs) -> None:
        if node.name:
            self.bound.add(node.name)
        self.generic_visit(node)

    def visit_MatchStar(self, node: ast.MatchStar) -> None:
        if node.name:
            self.bound.add(node.name)

    def visit_MatchMapping(self, node: ast.MatchMapping) -> None:
        if node.rest:
            self.bound.add(node.rest)
        self.generic_visit(node)

    def visit_Global(self, node: ast.Global) -> None:
        self.globals.update(node.names)

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self.nonlocals.update(node.names)


class _Scope:
    __slots__ = ("kind", "bound", "globals")

    def __init__(self, kind: str, bound: set[str], globals_: set[str] | frozenset[str] = frozenset()) -> None:
        self.kind = kind
        self.bound = bound
        self.globals = globals_


def _arg_names(args: ast.arguments) -> set[str]:
    names = {a.arg for a in args.posonlyargs + args.args + args.kwonlyargs}
    if args.vararg:
        names.add(args.vararg.arg)
    if args.kwarg:
        names.add(args.kwarg.arg)
    return names


def _target_names(node: ast.AST) -> set[str]:
    return {n.id for n in ast.walk(node) if isinstance(n, ast.Name)}


class ScopeVisitor(ast.NodeVisitor):
    """Walk a cell's tree keeping a stack of lexical scopes.

    Subclasses call ``is_global_read(name)`` to ask whether a name loaded at
    the current position resolves to a global the cell does not define.
    """

    def __init__(self, top_level: set[str]) -> None:
        self._top_level = top_level
        self._scopes: list[_Scope] = []

    def resolves_globally(self, name: str) -> bool:
        """True if ``name`` at the current position refers to a module global."""
        for depth, scope in enumerate(reversed(self._scopes)):
            if name in scope.globals:
                return True
            # Class bodies are only visible to code directly inside them.
            if scope.kind == "class" and depth > 0:
                continue
            if name in scope.bound:
                return False
        return True

    def is_global_read(self, name: str) -> bool:
        return self.resolves_globally(name) and name not in self._top_level

    def _push(self, kind: str, body: list[ast.stmt], extra: set[str] = frozenset()) -> None:
        binder = _Binder.scan(body)
        bound = (binder.bound | binder.handler_names | binder.nonlocals | set(extra)) - binder.globals
        self._scopes.append(_Scope(kind, bound, binder.globals))

    def _visit_arguments(self, args: ast.arguments) -> None:
        for default in args.defaults + [d for d in args.kw_defaults if d is not None]:
            self.visit(default)
        for arg in args.posonlyargs + args.args + args.kwonlyargs + [args.vararg, args.kwarg]:
            if arg is not None and arg.annotation is not None:
                self.visit(arg.annotation)

    def visit_FunctionDef(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        for expr in node.decorator_list:
            self.visit(expr)
        self._visit_arguments(node.args)
        if node.returns is not None:
            self.visit(node.returns)
        self._push("function", node.body, _arg_names(node.args))
        for stmt in node.body:
            self.visit(stmt)
        self._scopes.pop()

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_Lambda(self, node: ast.Lambda) -> None:
        self._visit_arguments(node.args)
        self._scopes.append(_Scope("function", _arg_names(node.args)))
        self.visit(node.body)
        self._scopes.pop()

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        for expr in node.decorator_list + node.bases + [k.value for k in node.keywords]:
            self.visit(expr)
        self._push("class", node.body)
        for stmt in node.body:
            self.visit(stmt)
        self._scopes.pop()

    def _visit_comprehension(self, node: ast.ListComp | ast.SetComp | ast.GeneratorExp | ast.DictComp) -> None:
        first, *rest = node.generators
        # The outermost iterable is evaluated in the enclosing scope.
        self.visit(first.iter)
        bound: set[str] = set()
        for gen in node.generators:
            bound |= _target_names(gen.target)
        self._scopes.append(_Scope("comprehension", bound))
        for cond in first.ifs:
            self.visit(cond)
        for gen in rest:
            self.visit(gen.iter)
            for cond in gen.ifs:
                self.visit(cond)
        if isinstance(node, ast.DictComp):
            self.visit(node.key)
            self.visit(node.value)
        else:
            self.visit(node.elt)
        self._scopes.pop()

    visit_ListComp = visit_SetComp = visit_GeneratorExp = visit_DictComp = _visit_comprehension


class _ReadCollector(ScopeVisitor):
    def __init__(self, top_level: set[str]) -> None:
        super().__init__(top_level)
        self.reads: set[str] = set()

    def visit_Name(self, node: ast.Name) -> None:
        if isinstance(node.ctx, ast.Load) and self.is_global_read(node.id):
            self.reads.add(node.id)

    def visit_AugAssign(self, node: ast.AugAssign) -> None:
        # `x += 1` inside a function loads the target before storing it.
        if isinstance(node.target, ast.Name) and self.is_global_read(node.target.id):
            self.reads.add(node.target.id)
        self.generic_visit(node)

    def visit_Global(self, node: ast.Global) -> None:
        pass


def is_local_name(name: str, prefix: str = LOCAL_PREFIX) -> bool:
    return bool(prefix) and name.startswith(prefix)


def analyze(source: str, local_prefix: str = LOCAL_PREFIX, cell_id: str = "") -> Analysis:
    """Extract (defines, reads, locals) from a cell's source.

    A syntax error yields an Analysis with empty sets and ``error`` set. So
    does a cell too deeply nested to parse or walk.
    """
    try:
        tree = ast.parse(source)
        # `return` or `break` at top level is only rejected by the compiler.
        compile(tree, "<cell>", "exec")
        binder = _Binder.scan(tree.body)
        top_level = binder.bound
        # Handler names are bound while the handler runs but unbound afterwards.
        collector = _ReadCollector(top_level | binder.handler_names)
        for stmt in tree.body:
            collector.visit(stmt)
    except SyntaxError as exc:
        return Analysis(error=ParseError.from_syntax_error(cell_id, exc))
    except (ValueError, RecursionError, MemoryError) as exc:
        return Analysis(error=ParseError(cell_id, f"{type(exc).__name__}: {exc}"))

    return Analysis(
        defines=frozenset(n for n in top_level if not is_local_name(n, local_prefix)),
        reads=frozenset(n for n in collector.reads if not is_local_name(n, local_prefix)),
        locals=frozenset(n for n in top_level if is_local_name(n, local_prefix)),
        tree=tree,
    )
