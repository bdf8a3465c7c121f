"""
Deposit ledger and grant store.

Both tables are plain dicts keyed by composite ids. A missing key is the
only representation of "no balance" / "no active grant"; the stores never
keep zero balances or dead grants around. Writes can be recorded in an
UndoJournal so a failing operation can restore every entry it touched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Iterator, NamedTuple

from . import safe_math
from .exceptions import ArithmeticOverflowError, InsufficientBalanceError

logger = logging.getLogger(__name__)

_ABSENT = object()


class DepositKey(NamedTuple):
    token_id: str
    grantor: str


class GrantKey(NamedTuple):
    token_id: str
    grantor: str
    beneficiary: str


@dataclass(frozen=True)
class Grant:
    """A live vesting grant. Immutable; updates produce a new record."""

    vested_amount: int
    start_time: int
    cliff_time: int
    end_time: int
    withdrawn_amount: int = 0

    @property
    def outstanding(self) -> int:
        """Amount still held in custody for this grant."""
        return self.vested_amount - self.withdrawn_amount

    @property
    def fully_withdrawn(self) -> bool:
        return self.withdrawn_amount == self.vested_amount

    def with_withdrawn(self, amount: int) -> "Grant":
        """Return a copy with ``amount`` added to the withdrawn counter."""
        withdrawn = safe_math.checked_add(self.withdrawn_amount, amount)
        if withdrawn > self.vested_amount:
            raise ArithmeticOverflowError(
                "withdrawn amount would exceed vested amount",
                details={"vested": self.vested_amount, "withdrawn": withdrawn},
            )
        return replace(self, withdrawn_amount=withdrawn)

    def to_dict(self) -> dict[str, int]:
        return {
            "vested_amount": self.vested_amount,
            "start_time": self.start_time,
            "cliff_time": self.cliff_time,
            "end_time": self.end_time,
            "withdrawn_amount": self.withdrawn_amount,
        }


class UndoJournal:
    """Records prior values of every table write for rollback."""

    def __init__(self) -> None:
        self._entries: list[tuple[dict, Any, Any]] = []

    def record(self, table: dict, key: Any) -> None:
        self._entries.append((table, key, table.get(key, _ABSENT)))

    def rollback(self) -> int:
        """Restore recorded entries newest-first; returns how many were undone."""
        undone = len(self._entries)
        while self._entries:
            table, key, previous = self._entries.pop()
            if previous is _ABSENT:
                table.pop(key, None)
            else:
                table[key] = previous
        return undone


class _JournaledTable:
    def __init__(self) -> None:
        self._rows: dict = {}
        self.journal: UndoJournal | None = None

    def _write(self, key: Any, value: Any) -> None:
        if self.journal is not None:
            self.journal.record(self._rows, key)
        self._rows[key] = value

    def _delete(self, key: Any) -> None:
        if key not in self._rows:
            return
        if self.journal is not None:
            self.journal.record(self._rows, key)
        del self._rows[key]


class DepositLedger(_JournaledTable):
    """Uncommitted custodied value per (token, grantor)."""

    def balance_of(self, token_id: str, grantor: str) -> int:
        return self._rows.get(DepositKey(token_id, grantor), 0)

    def credit(self, token_id: str, grantor: str, amount: int) -> int:
        key = DepositKey(token_id, grantor)
        new_balance = safe_math.checked_add(self._rows.get(key, 0), amount)
        self._write(key, new_balance)
        return new_balance

    def debit(self, token_id: str, grantor: str, amount: int) -> int:
        key = DepositKey(token_id, grantor)
        current = self._rows.get(key, 0)
        if current < amount:
            raise InsufficientBalanceError(
                f"deposit balance {current} is less than {amount}",
                details={"token": token_id, "grantor": grantor, "balance": current, "amount": amount},
            )
        new_balance = current - amount
        if new_balance:
            self._write(key, new_balance)
        else:
            self._delete(key)
        return new_balance

    def total(self, token_id: str) -> int:
        return sum(balance for key, balance in self._rows.items() if key.token_id == token_id)

    def items(self) -> Iterator[tuple[DepositKey, int]]:
        return iter(list(self._rows.items()))

    def load(self, rows: dict[DepositKey, int]) -> None:
        self._rows = {DepositKey(*key): value for key, value in rows.items() if value > 0}


class GrantStore(_JournaledTable):
    """At most one live Grant per (token, grantor, beneficiary)."""

    def get(self, token_id: str, grantor: str, beneficiary: str) -> Grant | None:
        return self._rows.get(GrantKey(token_id, grantor, beneficiary))

    def exists(self, token_id: str, grantor: str, beneficiary: str) -> bool:
        return GrantKey(token_id, grantor, beneficiary) in self._rows

    def put(self, token_id: str, grantor: str, beneficiary: str, grant: Grant) -> None:
        self._write(GrantKey(token_id, grantor, beneficiary), grant)

    def delete(self, token_id: str, grantor: str, beneficiary: str) -> None:
        self._delete(GrantKey(token_id, grantor, beneficiary))

    def for_token(self, token_id: str) -> list[tuple[GrantKey, Grant]]:
        return [(key, grant) for key, grant in self._rows.items() if key.token_id == token_id]

    def items(self) -> Iterator[tuple[GrantKey, Grant]]:
        return iter(list(self._rows.items()))

    def load(self, rows: dict[GrantKey, Grant]) -> None:
        self._rows = {GrantKey(*key): grant for key, grant in rows.items()}
