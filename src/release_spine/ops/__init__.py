"""
Operations layer: transport-agnostic commands for operators.

The CLI (and any future webhook handler) call these functions; they
never raise for expected failures and always return an
:class:`~release_spine.ops.result.OperationResult`.

::

    context.py    OperationContext (conn, caller, dry_run)
    result.py     OperationResult / PagedResult / error codes
    requests.py   input dataclasses
    responses.py  output dataclasses
    releases.py   create, trigger stages, pause/resume/archive,
                  regression slots, retry and callbacks
    locks.py      lease inspection and force-release
"""

from .context import OperationContext
from .result import (
    INTERNAL,
    INVALID_TRANSITION,
    NOT_FOUND,
    RELEASE_LOCKED,
    VALIDATION_FAILED,
    OperationError,
    OperationResult,
    PagedResult,
)

__all__ = [
    "INTERNAL",
    "INVALID_TRANSITION",
    "NOT_FOUND",
    "RELEASE_LOCKED",
    "VALIDATION_FAILED",
    "OperationContext",
    "OperationError",
    "OperationResult",
    "PagedResult",
]
