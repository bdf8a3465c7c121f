"""Audit records emitted by the vault after each successful mutation."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any

DEPOSIT = "Deposit"
NEW_GRANT = "NewGrant"
GRANT_REVOKED = "GrantRevoked"
WITHDRAW = "Withdraw"


@dataclass(frozen=True)
class VaultEvent:
    """Base record; ``event_type`` names the mutation."""

    event_type: str
    token_id: str
    timestamp: float = field(default_factory=time.time, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DepositEvent(VaultEvent):
    depositor: str = ""
    amount: int = 0
    new_balance: int = 0


@dataclass(frozen=True)
class NewGrantEvent(VaultEvent):
    grantor: str = ""
    beneficiary: str = ""
    vested_amount: int = 0
    start_time: int = 0
    cliff_time: int = 0
    end_time: int = 0


@dataclass(frozen=True)
class GrantRevokedEvent(VaultEvent):
    grantor: str = ""
    beneficiary: str = ""
    # Paid to the beneficiary at revocation
    released: int = 0
    # Credited back to the grantor's deposit balance
    returned: int = 0


@dataclass(frozen=True)
class WithdrawEvent(VaultEvent):
    grantor: str = ""
    beneficiary: str = ""
    released: int = 0
    withdrawn_total: int = 0
    completed: bool = False
