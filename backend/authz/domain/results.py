"""
Decision results.

Non-raising checks return one of these so callers branch on type rather
than on error strings. ``raise_for_result`` converts a non-allowed result to
the matching AppError for enforcing call sites.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union

from authz.errors import (
    AppError,
    ConflictError,
    MisconfiguredError,
    NotFoundError,
    PermissionDeniedError,
)


@dataclass(frozen=True)
class Allowed:
    kind: Literal["allowed"] = "allowed"


@dataclass(frozen=True)
class Denied:
    missing_permissions: tuple[str, ...] = ()
    reason: str = "Insufficient permissions"
    kind: Literal["denied"] = "denied"


@dataclass(frozen=True)
class NotFound:
    reason: str = "Resource not found"
    kind: Literal["not_found"] = "not_found"


@dataclass(frozen=True)
class Conflict:
    reason: str = "Resource conflict"
    details: dict = field(default_factory=dict)
    kind: Literal["conflict"] = "conflict"


@dataclass(frozen=True)
class Misconfigured:
    reason: str = "Authorization configuration error"
    details: dict = field(default_factory=dict)
    kind: Literal["misconfigured"] = "misconfigured"


Decision = Union[Allowed, Denied, NotFound, Conflict, Misconfigured]

ALLOWED = Allowed()


def is_allowed(result: Decision) -> bool:
    return isinstance(result, Allowed)


def to_error(result: Decision) -> AppError | None:
    """The AppError equivalent of a result (None for Allowed)."""
    if isinstance(result, Allowed):
        return None
    if isinstance(result, Denied):
        return PermissionDeniedError(
            result.reason, missing_permissions=list(result.missing_permissions)
        )
    if isinstance(result, NotFound):
        return NotFoundError(result.reason)
    if isinstance(result, Conflict):
        return ConflictError(result.reason, details=result.details or None)
    return MisconfiguredError(result.reason, details=result.details or None)


def raise_for_result(result: Decision) -> None:
    error = to_error(result)
    if error is not None:
        raise error
