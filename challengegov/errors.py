"""Domain level outcomes shared by the contexts and the routers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")

NOT_PERMITTED = "not_permitted"


class ChallengeGovError(Exception):
    """Base class for domain errors."""


class NotFound(ChallengeGovError):
    def __init__(self, what: str = "record") -> None:
        super().__init__(f"{what} not found")
        self.what = what


class TransitionError(ChallengeGovError):
    """A status transition was requested from a state that forbids it."""

    def __init__(self, action: str, status: str) -> None:
        super().__init__(f"cannot {action} a challenge with status {status!r}")
        self.action = action
        self.status = status


class ChangesetError(ChallengeGovError):
    """Field level validation failure.

    ``params`` carries the submitted input back so the caller can re-display
    the form, including any document selections that were still valid.
    """

    def __init__(
        self, errors: dict[str, list[str]], params: dict[str, Any] | None = None
    ) -> None:
        super().__init__("; ".join(f"{k} {', '.join(v)}" for k, v in errors.items()))
        self.errors = errors
        self.params = dict(params or {})


@dataclass(frozen=True)
class Permission(Generic[T]):
    """Result of a permission check. Falsy when the action is not permitted."""

    allowed: bool
    subject: T | None = None
    reason: str | None = field(default=None)

    def __bool__(self) -> bool:
        return self.allowed


def permitted(subject: T) -> Permission[T]:
    return Permission(True, subject)


def not_permitted() -> Permission[Any]:
    return Permission(False, None, NOT_PERMITTED)
