"""
Exception hierarchy for the vesting vault.

Every failure of a vault operation is raised as a subclass of VestingError so
callers can catch the whole family, while the concrete type tells them which
precondition failed. Operations never leave partial state behind when they
raise.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class VestingError(Exception):
    """Base exception for all vault errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether resubmitting the same call may succeed later
    """

    code = "vesting_error"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable


# ==================== Caller Errors ====================


class InvalidArgumentError(VestingError, ValueError):
    """Raised for malformed identifiers, zero amounts or a cliff past the grant end."""

    code = "invalid_argument"


class GrantAlreadyExistsError(VestingError):
    """Raised when a live grant already occupies the (token, grantor, beneficiary) key."""

    code = "grant_exists"


class GrantNotFoundError(VestingError, LookupError):
    """Raised when revoking or withdrawing from a key with no live grant."""

    code = "grant_not_found"


class InsufficientBalanceError(VestingError):
    """Raised when a grant would commit more than the grantor has deposited."""

    code = "insufficient_balance"


class NothingToWithdrawError(VestingError):
    """Raised by withdraw under the reject policy when nothing has unlocked."""

    code = "nothing_to_withdraw"

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ReentrantCallError(VestingError):
    """Raised when a state-changing call re-enters the vault mid-operation."""

    code = "reentrant_call"


# ==================== Arithmetic Errors ====================


class ArithmeticOverflowError(VestingError, ArithmeticError):
    """Raised when amount or timestamp arithmetic leaves the unsigned range."""

    code = "arithmetic_overflow"


# ==================== Custody Errors ====================


class TransferRejectedError(VestingError):
    """Raised when the custody gateway declines a pull-in or push-out.

    Typical causes are a missing allowance or an insufficient external
    balance. The caller may fix the cause and resubmit.
    """

    code = "transfer_rejected"

    def __init__(
        self,
        message: str,
        token_id: Optional[str] = None,
        amount: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)
        self.token_id = token_id
        self.amount = amount


class TokenError(Exception):
    """Raised by FungibleToken when a token operation is not allowed."""
    pass


# ==================== Storage Errors ====================


class VaultStorageError(VestingError):
    """Raised when vault snapshots cannot be written or read."""

    code = "storage_error"


class CorruptedStateError(VaultStorageError):
    """Raised when a stored snapshot fails its checksum or structure checks."""

    code = "corrupted_state"
