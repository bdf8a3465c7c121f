"""
grantvault - custodial ledger for time-released token grants.
"""

from grantvault.contracts.fungible_token import FungibleToken
from grantvault.core.custody import CustodyGateway, TokenCustodyGateway
from grantvault.core.exceptions import (
    ArithmeticOverflowError,
    CorruptedStateError,
    GrantAlreadyExistsError,
    GrantNotFoundError,
    InsufficientBalanceError,
    InvalidArgumentError,
    NothingToWithdrawError,
    ReentrantCallError,
    TransferRejectedError,
    VaultStorageError,
    VestingError,
)
from grantvault.core.ledger import Grant
from grantvault.core.persistence import VaultStateStore
from grantvault.core.release import releasable, vested_to_date
from grantvault.core.vesting_vault import VestingVault

__version__ = "0.1.0"

__all__ = [
    "ArithmeticOverflowError",
    "CorruptedStateError",
    "CustodyGateway",
    "FungibleToken",
    "Grant",
    "GrantAlreadyExistsError",
    "GrantNotFoundError",
    "InsufficientBalanceError",
    "InvalidArgumentError",
    "NothingToWithdrawError",
    "ReentrantCallError",
    "TokenCustodyGateway",
    "TransferRejectedError",
    "VaultStateStore",
    "VaultStorageError",
    "VestingError",
    "VestingVault",
    "releasable",
    "vested_to_date",
]
