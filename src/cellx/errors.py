"""Error taxonomy — every cell-level failure the engine can record.

Cell errors are values, not control flow: the engine stores them on the
cell and keeps going. Only façade misuse (unknown or duplicate cell ids)
is raised to the caller.
"""

from __future__ import annotations

import traceback as _traceback


class CellError(Exception):
    """Base for errors scoped to a single cell."""

    # Hidden errors are recorded but not shown to the author.
    visible = True

    def __init__(self, cell_id: str, message: str) -> None:
        super().__init__(message)
        self.cell_id = cell_id
        self.message = message

    def __eq__(self, other: object) -> bool:
        return (
            type(other) is type(self)
            and other.cell_id == self.cell_id
            and other.message == self.message
        )

    def __hash__(self) -> int:
        return hash((type(self), self.cell_id, self.message))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.cell_id!r}, {self.message!r})"


class ParseError(CellError):
    """The cell's source could not be parsed."""

    def __init__(self, cell_id: str, message: str, lineno: int | None = None, offset: int | None = None) -> None:
        super().__init__(cell_id, message)
        self.lineno = lineno
        self.offset = offset

    @classmethod
    def from_syntax_error(cls, cell_id: str, exc: SyntaxError) -> ParseError:
        return cls(cell_id, f"{exc.msg} (line {exc.lineno})", exc.lineno, exc.offset)


class ConflictError(CellError):
    """A global name is defined by more than one cell."""

    def __init__(self, cell_id: str, name: str, cells: tuple[str, ...]) -> None:
        super().__init__(
            cell_id,
            f"'{name}' is defined by more than one cell: {', '.join(cells)}",
        )
        self.name = name
        self.cells = cells


class CycleError(CellError):
    """The cell is part of a dependency cycle."""

    def __init__(self, cell_id: str, cycle: tuple[str, ...]) -> None:
        super().__init__(cell_id, f"cell is part of a dependency cycle: {' -> '.join(cycle)}")
        self.cycle = cycle


class CellRuntimeError(CellError):
    """The cell raised while executing."""

    def __init__(self, cell_id: str, exception: Exception) -> None:
        super().__init__(cell_id, f"{type(exception).__name__}: {exception}")
        self.exception = exception
        self.traceback = "".join(
            _traceback.format_exception(type(exception), exception, exception.__traceback__)
        )


class BlockedError(CellError):
    """Not run because an upstream cell failed."""

    def __init__(self, cell_id: str, upstream: str) -> None:
        super().__init__(cell_id, f"not run due to upstream error in cell '{upstream}'")
        self.upstream = upstream


class Cancelled(CellError):
    """The run was cancelled by an external stop signal."""

    visible = False

    def __init__(self, cell_id: str) -> None:
        super().__init__(cell_id, "cancelled")


class SupersededRun(Exception):
    """A result from a generation that is no longer current. Never surfaced."""

    def __init__(self, cell_id: str, generation: int, current: int) -> None:
        super().__init__(f"{cell_id}: generation {generation} superseded by {current}")
        self.cell_id = cell_id
        self.generation = generation
        self.current = current


class StaleSymbolError(LookupError):
    """A global name was invalidated because its producing cell failed."""

    def __init__(self, name: str, cell_id: str | None) -> None:
        super().__init__(f"'{name}' is stale (producer: {cell_id})")
        self.name = name
        self.cell_id = cell_id


class UnknownCellError(KeyError):
    pass


class DuplicateCellError(ValueError):
    pass
