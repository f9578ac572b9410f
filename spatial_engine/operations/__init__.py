"""Operation library.

Implements the seven spatial operations against normalized geometry:
- buffer, simplify (``transform``)
- point-in-polygon (``selection``)
- union, intersection (``overlay``)
- clip, difference (``masking``)

``run_operation`` dispatches a typed request to its implementation;
``ProgressEmitter`` throttles progress updates to the caller.
"""

from spatial_engine.operations.library import run_operation
from spatial_engine.operations.progress import ProgressCallback, ProgressEmitter

__all__ = [
    "ProgressCallback",
    "ProgressEmitter",
    "run_operation",
]
