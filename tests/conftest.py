"""
Test configuration and fixtures
"""
import sys
from pathlib import Path

# Add src to Python path so tests run without an editable install
project_root = Path(__file__).parent.parent
src_path = project_root / "src"
sys.path.insert(0, str(src_path))

import pytest

from grantvault.contracts.fungible_token import FungibleToken
from grantvault.core.custody import TokenCustodyGateway
from grantvault.core.vesting_vault import VestingVault

DAY = 24 * 3600
START = 1_700_000_000

ISSUER = "0xissuer"
GRANTOR = "0xgrantor"
BENEFICIARY = "0xbeneficiary"
OTHER = "0xother"


class ManualClock:
    def __init__(self, start_time: int):
        self.current_time = start_time

    def now(self) -> int:
        return self.current_time

    def advance(self, seconds: int):
        self.current_time += seconds

    def set(self, timestamp: int):
        self.current_time = timestamp


@pytest.fixture
def clock():
    return ManualClock(start_time=START)


@pytest.fixture
def token():
    """Token with 1,000,000 units minted to the grantor and 5,000 to OTHER."""
    tok = FungibleToken(name="Grant Token", symbol="GRT", owner=ISSUER)
    tok.mint(ISSUER, GRANTOR, 1_000_000)
    tok.mint(ISSUER, OTHER, 5_000)
    return tok


@pytest.fixture
def gateway(token):
    return TokenCustodyGateway([token])


@pytest.fixture
def vault(gateway, clock):
    return VestingVault(gateway, time_provider=clock.now, reject_zero_withdrawal=False)


@pytest.fixture
def fund(token, gateway, vault):
    """Approve and deposit ``amount`` for ``who``; returns the new balance."""

    def _fund(amount: int, who: str = GRANTOR) -> int:
        token.increase_allowance(who, gateway.vault_address, amount)
        return vault.deposit(token.address, who, amount)

    return _fund


@pytest.fixture
def assert_conserved(vault, gateway, token):
    """Custody must hold exactly what the vault owes."""

    def _check() -> None:
        assert gateway.custody_balance(token.address) == vault.total_liabilities(token.address)

    return _check
