"""cellx: a reactive execution engine for notebook-style Python cells."""

from importlib.metadata import version as _version

__version__ = _version("cellx")

from cellx._anchor import CellState
from cellx._tracking import interrupted
from cellx.analyzer import Analysis, analyze
from cellx.cell import Cell
from cellx.engine import Engine, PassHandle
from cellx.errors import (
    BlockedError,
    Cancelled,
    CellError,
    CellRuntimeError,
    ConflictError,
    CycleError,
    DuplicateCellError,
    ParseError,
    StaleSymbolError,
    SupersededRun,
    UnknownCellError,
)
from cellx.events import CellEvent, EventStream
from cellx.graph import DependencyEdge, Graph
from cellx.guard import MutationWarning
from cellx.language import Language, PythonLanguage
from cellx.scheduler import PassResult
from cellx.widget import Widget, set_scheduler
# textual is opt-in and not imported here

__all__ = [
    "Engine",
    "PassHandle",
    "PassResult",
    "Cell",
    "CellState",
    "CellEvent",
    "EventStream",
    "Analysis",
    "analyze",
    "Graph",
    "DependencyEdge",
    "MutationWarning",
    "Language",
    "PythonLanguage",
    "Widget",
    "set_scheduler",
    "interrupted",
    "CellError",
    "ParseError",
    "ConflictError",
    "CycleError",
    "CellRuntimeError",
    "BlockedError",
    "Cancelled",
    "SupersededRun",
    "StaleSymbolError",
    "UnknownCellError",
    "DuplicateCellError",
]
