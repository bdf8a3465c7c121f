"""
Vesting vault: custodial ledger for time-released token grants.

A grantor deposits tokens into custody, then commits part of that deposit to
a vesting grant for a beneficiary. The beneficiary withdraws linearly
released tokens after the cliff; the grantor may revoke, which pays out what
has unlocked and returns the rest to the grantor's deposit balance.

Invariants:
- For every token, the gateway's custody balance equals
  ``total_liabilities(token)``: all deposit balances plus the unwithdrawn
  part of every live grant.
- Each state-changing call is one transaction. Every ledger/store write is
  journaled and rolled back if anything raises, including the gateway.
- Bookkeeping is committed before the gateway is asked to pay out, and a
  state-changing call that re-enters the vault from inside the gateway is
  refused with ReentrantCallError.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from . import config, safe_math
from .custody import CustodyGateway
from .events import (
    DEPOSIT,
    GRANT_REVOKED,
    NEW_GRANT,
    WITHDRAW,
    DepositEvent,
    GrantRevokedEvent,
    NewGrantEvent,
    VaultEvent,
    WithdrawEvent,
)
from .exceptions import (
    CorruptedStateError,
    GrantAlreadyExistsError,
    GrantNotFoundError,
    InvalidArgumentError,
    NothingToWithdrawError,
    ReentrantCallError,
    VestingError,
)
from .ledger import DepositLedger, Grant, GrantStore, UndoJournal
from .release import releasable, releasable_as_of, vested_to_date

logger = logging.getLogger(__name__)

_ZERO_ADDRESS = "0x" + "0" * 40


class VestingVault:
    """Deposit ledger, grant store and grant lifecycle over a custody gateway."""

    def __init__(
        self,
        gateway: CustodyGateway,
        time_provider: Callable[[], int] | None = None,
        reject_zero_withdrawal: bool | None = None,
    ) -> None:
        self.gateway = gateway
        self.deposits = DepositLedger()
        self.grants = GrantStore()
        self.events: list[VaultEvent] = []
        self.reject_zero_withdrawal = (
            config.reject_zero_withdrawal_default()
            if reject_zero_withdrawal is None
            else reject_zero_withdrawal
        )
        self._time_provider = time_provider or (lambda: int(time.time()))
        self._lock = threading.RLock()
        self._active_operation: str | None = None
        logger.info(
            "VestingVault initialized",
            extra={
                "event": "vesting.vault_initialized",
                "deterministic_clock": time_provider is not None,
                "reject_zero_withdrawal": self.reject_zero_withdrawal,
                "uint_bits": config.UINT_BITS,
            },
        )

    # ==================== State-Changing Operations ====================

    def deposit(self, token_id: str, caller: str, amount: int) -> int:
        """
        Pull ``amount`` of ``token_id`` from ``caller`` into custody.

        Returns:
            The caller's new deposit balance

        Raises:
            InvalidArgumentError: Bad token id, caller or amount
            ArithmeticOverflowError: The balance would leave the unsigned range
            TransferRejectedError: The gateway refused the pull
        """
        token_id = self._require_id(token_id, "token")
        caller = self._require_id(caller, "caller")
        self._require_positive(amount, "amount")

        with self._transaction("deposit") as pending:
            new_balance = safe_math.checked_add(self.deposits.balance_of(token_id, caller), amount)
            self.gateway.pull_in(token_id, caller, amount)
            self.deposits.credit(token_id, caller, amount)
            pending.append(
                DepositEvent(
                    event_type=DEPOSIT,
                    token_id=token_id,
                    depositor=caller,
                    amount=amount,
                    new_balance=new_balance,
                )
            )

        logger.info(
            "Deposit recorded",
            extra={
                "event": "vesting.deposit",
                "token": token_id[:10],
                "depositor": caller[:10],
                "amount": amount,
                "new_balance": new_balance,
            },
        )
        return new_balance

    def grant_vesting(
        self,
        token_id: str,
        grantor: str,
        beneficiary: str,
        vested_amount: int,
        start_time: int,
        grant_period: int,
        cliff_period: int,
    ) -> NewGrantEvent:
        """
        Commit ``vested_amount`` of the grantor's deposit to a new grant.

        No tokens move; deposited balance becomes locked in the grant.
        ``cliff_time = start_time + cliff_period`` and
        ``end_time = start_time + grant_period``.

        Raises:
            InvalidArgumentError: Bad ids, zero amount, cliff after end, or a
                vested_amount * grant_period product out of range
            GrantAlreadyExistsError: A grant is already live for this key
            ArithmeticOverflowError: cliff_time or end_time out of range
            InsufficientBalanceError: Deposit balance below vested_amount
        """
        token_id = self._require_id(token_id, "token")
        grantor = self._require_id(grantor, "grantor")
        beneficiary = self._require_id(beneficiary, "beneficiary")
        self._require_positive(vested_amount, "vested_amount")
        self._require_uint(start_time, "start_time")
        self._require_uint(grant_period, "grant_period")
        self._require_uint(cliff_period, "cliff_period")
        if cliff_period > grant_period:
            raise InvalidArgumentError(
                "cliff period cannot exceed grant period",
                details={"cliff_period": cliff_period, "grant_period": grant_period},
            )
        if grant_period > 0 and vested_amount * grant_period > config.MAX_UINT:
            raise InvalidArgumentError(
                "vested_amount * grant_period exceeds the arithmetic range",
                details={"vested_amount": vested_amount, "grant_period": grant_period},
            )

        with self._transaction("grant_vesting") as pending:
            if self.grants.exists(token_id, grantor, beneficiary):
                raise GrantAlreadyExistsError(
                    "a grant is already active for this grantor and beneficiary",
                    details={"token": token_id, "grantor": grantor, "beneficiary": beneficiary},
                )
            cliff_time = safe_math.checked_add(start_time, cliff_period)
            end_time = safe_math.checked_add(start_time, grant_period)
            self.deposits.debit(token_id, grantor, vested_amount)
            self.grants.put(
                token_id,
                grantor,
                beneficiary,
                Grant(
                    vested_amount=vested_amount,
                    start_time=start_time,
                    cliff_time=cliff_time,
                    end_time=end_time,
                ),
            )
            event = NewGrantEvent(
                event_type=NEW_GRANT,
                token_id=token_id,
                grantor=grantor,
                beneficiary=beneficiary,
                vested_amount=vested_amount,
                start_time=start_time,
                cliff_time=cliff_time,
                end_time=end_time,
            )
            pending.append(event)

        logger.info(
            "Vesting grant created",
            extra={
                "event": "vesting.grant_created",
                "token": token_id[:10],
                "grantor": grantor[:10],
                "beneficiary": beneficiary[:10],
                "vested_amount": vested_amount,
                "cliff_time": cliff_time,
                "end_time": end_time,
            },
        )
        return event

    def revoke_vesting(self, token_id: str, grantor: str, beneficiary: str) -> GrantRevokedEvent:
        """
        Cancel the grant ``grantor`` made to ``beneficiary``.

        Whatever has unlocked is paid to the beneficiary; the still-locked
        remainder is credited back to the grantor's deposit balance and the
        grant is removed.

        Raises:
            GrantNotFoundError: No live grant for this key
            TransferRejectedError: The payout was refused (nothing changes)
        """
        token_id = self._require_id(token_id, "token")
        grantor = self._require_id(grantor, "grantor")
        beneficiary = self._require_id(beneficiary, "beneficiary")

        with self._transaction("revoke_vesting") as pending:
            grant = self._require_grant(token_id, grantor, beneficiary)
            released = releasable(grant, self._current_time())
            if released > 0:
                grant = grant.with_withdrawn(released)
                self.grants.put(token_id, grantor, beneficiary, grant)
                self.gateway.push_out(token_id, beneficiary, released)

            returned = grant.outstanding
            if returned > 0:
                self.deposits.credit(token_id, grantor, returned)
            self.grants.delete(token_id, grantor, beneficiary)

            event = GrantRevokedEvent(
                event_type=GRANT_REVOKED,
                token_id=token_id,
                grantor=grantor,
                beneficiary=beneficiary,
                released=released,
                returned=returned,
            )
            pending.append(event)

        logger.info(
            "Vesting grant revoked",
            extra={
                "event": "vesting.grant_revoked",
                "token": token_id[:10],
                "grantor": grantor[:10],
                "beneficiary": beneficiary[:10],
                "released": released,
                "returned": returned,
            },
        )
        return event

    def withdraw(self, token_id: str, grantor: str, beneficiary: str) -> int:
        """
        Pay ``beneficiary`` everything that has unlocked on their grant.

        ``grantor`` only selects which grant. A fully consumed grant is
        removed. When nothing has unlocked the call returns 0 without side
        effects, or raises NothingToWithdrawError if the vault was built with
        ``reject_zero_withdrawal``.

        Returns:
            The amount released

        Raises:
            GrantNotFoundError: No live grant for this key
            NothingToWithdrawError: Nothing unlocked (reject policy only)
            TransferRejectedError: The payout was refused (nothing changes)
        """
        token_id = self._require_id(token_id, "token")
        grantor = self._require_id(grantor, "grantor")
        beneficiary = self._require_id(beneficiary, "beneficiary")

        with self._transaction("withdraw") as pending:
            grant = self._require_grant(token_id, grantor, beneficiary)
            released = releasable(grant, self._current_time())
            if released == 0:
                if self.reject_zero_withdrawal:
                    raise NothingToWithdrawError(
                        "nothing has been released yet",
                        details={"token": token_id, "cliff_time": grant.cliff_time},
                    )
                return 0

            grant = grant.with_withdrawn(released)
            if grant.fully_withdrawn:
                self.grants.delete(token_id, grantor, beneficiary)
            else:
                self.grants.put(token_id, grantor, beneficiary, grant)
            self.gateway.push_out(token_id, beneficiary, released)

            pending.append(
                WithdrawEvent(
                    event_type=WITHDRAW,
                    token_id=token_id,
                    grantor=grantor,
                    beneficiary=beneficiary,
                    released=released,
                    withdrawn_total=grant.withdrawn_amount,
                    completed=grant.fully_withdrawn,
                )
            )

        logger.info(
            "Vested tokens withdrawn",
            extra={
                "event": "vesting.withdraw",
                "token": token_id[:10],
                "grantor": grantor[:10],
                "beneficiary": beneficiary[:10],
                "released": released,
                "completed": grant.fully_withdrawn,
            },
        )
        return released

    # ==================== Views ====================

    def get_balance_vesting(
        self,
        token_id: str,
        grantor: str,
        beneficiary: str,
        current_time: int | None = None,
    ) -> int:
        """
        Amount the beneficiary could withdraw at ``current_time`` (default now).

        0 when no grant is live, and 0 for instants earlier than what the
        beneficiary has already been paid.
        """
        with self._lock:
            grant = self.grants.get(*self._key(token_id, grantor, beneficiary))
            if grant is None:
                return 0
            return releasable_as_of(grant, self._resolve_time(current_time))

    def get_balance_deposit(self, token_id: str, grantor: str) -> int:
        with self._lock:
            return self.deposits.balance_of(self._norm(token_id), self._norm(grantor))

    def get_grant(self, token_id: str, grantor: str, beneficiary: str) -> Grant | None:
        with self._lock:
            return self.grants.get(*self._key(token_id, grantor, beneficiary))

    def describe_grant(
        self,
        token_id: str,
        grantor: str,
        beneficiary: str,
        current_time: int | None = None,
    ) -> dict[str, Any] | None:
        """Grant fields plus unlocked-to-date and releasable amounts."""
        with self._lock:
            grant = self.grants.get(*self._key(token_id, grantor, beneficiary))
            if grant is None:
                return None
            now = self._resolve_time(current_time)
            return {
                **grant.to_dict(),
                "unlocked": vested_to_date(grant, now),
                "releasable": releasable_as_of(grant, now),
                "as_of": now,
            }

    def total_locked(self, token_id: str) -> int:
        """Unwithdrawn value across all live grants of ``token_id``."""
        with self._lock:
            return sum(grant.outstanding for _, grant in self.grants.for_token(self._norm(token_id)))

    def total_liabilities(self, token_id: str) -> int:
        """What custody must hold for ``token_id``: deposits plus locked grants."""
        with self._lock:
            return self.deposits.total(self._norm(token_id)) + self.total_locked(token_id)

    def events_of(self, event_type: str | None = None) -> list[VaultEvent]:
        with self._lock:
            if event_type is None:
                return list(self.events)
            return [event for event in self.events if event.event_type == event_type]

    # ==================== Serialization ====================

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "deposits": [
                    {"token": key.token_id, "grantor": key.grantor, "balance": balance}
                    for key, balance in self.deposits.items()
                ],
                "grants": [
                    {
                        "token": key.token_id,
                        "grantor": key.grantor,
                        "beneficiary": key.beneficiary,
                        **grant.to_dict(),
                    }
                    for key, grant in self.grants.items()
                ],
            }

    def restore_state(self, data: dict[str, Any]) -> None:
        """
        Replace both tables with a snapshot produced by ``to_dict``.

        Every row is validated before either table is touched; ids are
        normalized the same way the operations normalize them.

        Raises:
            CorruptedStateError: A row is malformed, duplicated, or describes
                a grant the vault could never have created
            ReentrantCallError: Called from inside a vault operation
        """
        with self._lock:
            if self._active_operation is not None:
                raise ReentrantCallError("cannot restore state during an operation")
            deposits: dict[tuple[str, str], int] = {}
            for index, row in enumerate(data.get("deposits", [])):
                key, balance = self._parse_deposit_row(index, row)
                if key in deposits:
                    raise CorruptedStateError("duplicate deposit row", details={"row": index})
                deposits[key] = balance
            grants: dict[tuple[str, str, str], Grant] = {}
            for index, row in enumerate(data.get("grants", [])):
                key, grant = self._parse_grant_row(index, row)
                if key in grants:
                    raise CorruptedStateError("duplicate grant row", details={"row": index})
                grants[key] = grant

            self.deposits.load(deposits)
            self.grants.load(grants)
            logger.info(
                "Vault state restored",
                extra={"event": "vesting.state_restored", "deposits": len(deposits), "grants": len(grants)},
            )

    # ==================== Helpers ====================

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[list[VaultEvent]]:
        with self._lock:
            if self._active_operation is not None:
                raise ReentrantCallError(
                    f"{operation} called while {self._active_operation} is in progress",
                    details={"operation": operation, "active": self._active_operation},
                )
            journal = UndoJournal()
            pending: list[VaultEvent] = []
            self.deposits.journal = journal
            self.grants.journal = journal
            self._active_operation = operation
            try:
                yield pending
            except Exception as exc:
                undone = journal.rollback()
                level = logging.WARNING if isinstance(exc, VestingError) else logging.ERROR
                logger.log(
                    level,
                    "Vault operation aborted",
                    extra={
                        "event": "vesting.operation_aborted",
                        "operation": operation,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                        "writes_undone": undone,
                    },
                )
                raise
            else:
                self.events.extend(pending)
            finally:
                self.deposits.journal = None
                self.grants.journal = None
                self._active_operation = None

    def _parse_deposit_row(self, index: int, row: Any) -> tuple[tuple[str, str], int]:
        try:
            key = (self._require_id(row["token"], "token"), self._require_id(row["grantor"], "grantor"))
            balance = self._require_uint(row["balance"], "balance")
        except (KeyError, TypeError, InvalidArgumentError) as exc:
            raise CorruptedStateError(
                f"invalid deposit row: {exc}", details={"row": index}
            ) from exc
        return key, balance

    def _parse_grant_row(self, index: int, row: Any) -> tuple[tuple[str, str, str], Grant]:
        try:
            key = (
                self._require_id(row["token"], "token"),
                self._require_id(row["grantor"], "grantor"),
                self._require_id(row["beneficiary"], "beneficiary"),
            )
            grant = Grant(
                vested_amount=self._require_positive(row["vested_amount"], "vested_amount"),
                start_time=self._require_uint(row["start_time"], "start_time"),
                cliff_time=self._require_uint(row["cliff_time"], "cliff_time"),
                end_time=self._require_uint(row["end_time"], "end_time"),
                withdrawn_amount=self._require_uint(row.get("withdrawn_amount", 0), "withdrawn_amount"),
            )
        except (KeyError, TypeError, AttributeError, InvalidArgumentError) as exc:
            raise CorruptedStateError(
                f"invalid grant row: {exc}", details={"row": index}
            ) from exc

        # Fully withdrawn grants are deleted, so a live one always owes something
        if grant.withdrawn_amount >= grant.vested_amount:
            problem = "withdrawn_amount must be below vested_amount"
        elif not grant.start_time <= grant.cliff_time <= grant.end_time:
            problem = "times must satisfy start_time <= cliff_time <= end_time"
        elif grant.vested_amount * (grant.end_time - grant.start_time) > config.MAX_UINT:
            problem = "vested_amount * grant period exceeds the arithmetic range"
        else:
            return key, grant
        raise CorruptedStateError(f"invalid grant row: {problem}", details={"row": index, **grant.to_dict()})

    def _require_grant(self, token_id: str, grantor: str, beneficiary: str) -> Grant:
        grant = self.grants.get(token_id, grantor, beneficiary)
        if grant is None:
            raise GrantNotFoundError(
                "no active grant for this grantor and beneficiary",
                details={"token": token_id, "grantor": grantor, "beneficiary": beneficiary},
            )
        return grant

    def _current_time(self) -> int:
        timestamp = self._time_provider()
        try:
            return safe_math.require_uint(int(timestamp), "now")
        except (TypeError, ValueError) as exc:
            raise ValueError("time_provider must return an integer timestamp") from exc

    def _resolve_time(self, current_time: int | None) -> int:
        if current_time is None:
            return self._current_time()
        return self._require_uint(current_time, "current_time")

    def _key(self, token_id: str, grantor: str, beneficiary: str) -> tuple[str, str, str]:
        return self._norm(token_id), self._norm(grantor), self._norm(beneficiary)

    @staticmethod
    def _norm(value: str) -> str:
        return value.strip().lower() if isinstance(value, str) else value

    @classmethod
    def _require_id(cls, value: str, name: str) -> str:
        normalized = cls._norm(value)
        if not isinstance(normalized, str) or not normalized or normalized == _ZERO_ADDRESS:
            raise InvalidArgumentError(f"{name} must be a non-empty, non-zero identifier", details={"field": name})
        return normalized

    @staticmethod
    def _require_uint(value: int, name: str) -> int:
        if not safe_math.is_uint(value):
            raise InvalidArgumentError(
                f"{name} must be an unsigned integer up to {config.UINT_BITS} bits",
                details={"field": name, "value": repr(value)},
            )
        return value

    @classmethod
    def _require_positive(cls, value: int, name: str) -> int:
        cls._require_uint(value, name)
        if value == 0:
            raise InvalidArgumentError(f"{name} must be greater than zero", details={"field": name})
        return value
