"""
Grant lifecycle tests for VestingVault: deposit, grant, withdraw, revoke,
their preconditions, and atomicity when the custody gateway refuses.
"""

import pytest

from grantvault.core import config
from grantvault.core.events import DEPOSIT, GRANT_REVOKED, NEW_GRANT, WITHDRAW
from grantvault.core.exceptions import (
    ArithmeticOverflowError,
    GrantAlreadyExistsError,
    GrantNotFoundError,
    InsufficientBalanceError,
    InvalidArgumentError,
    NothingToWithdrawError,
    ReentrantCallError,
    TransferRejectedError,
)
from grantvault.core.vesting_vault import VestingVault

DAY = 24 * 3600
START = 1_700_000_000
GRANTOR = "0xgrantor"
BENEFICIARY = "0xbeneficiary"
OTHER = "0xother"


def grant_default(vault, token, amount=1000, start=START, period=100 * DAY, cliff=10 * DAY,
                  grantor=GRANTOR, beneficiary=BENEFICIARY):
    return vault.grant_vesting(token.address, grantor, beneficiary, amount, start, period, cliff)


class TestDeposit:
    def test_deposit_pulls_tokens_and_credits_balance(self, vault, token, gateway, fund, assert_conserved):
        assert fund(600) == 600
        assert fund(400) == 1000
        assert vault.get_balance_deposit(token.address, GRANTOR) == 1000
        assert token.balance_of(GRANTOR) == 999_000
        assert gateway.custody_balance(token.address) == 1000
        assert_conserved()

    def test_deposit_emits_event(self, vault, token, fund):
        fund(250)
        (event,) = vault.events_of(DEPOSIT)
        assert event.depositor == GRANTOR
        assert event.amount == 250
        assert event.new_balance == 250

    def test_unknown_depositor_reads_zero(self, vault, token):
        assert vault.get_balance_deposit(token.address, "0xnobody") == 0

    def test_deposit_without_allowance_is_rejected(self, vault, token):
        with pytest.raises(TransferRejectedError) as excinfo:
            vault.deposit(token.address, GRANTOR, 100)
        assert excinfo.value.recoverable
        assert vault.get_balance_deposit(token.address, GRANTOR) == 0
        assert vault.events == []

    def test_deposit_beyond_external_balance_is_rejected(self, vault, token, gateway):
        token.approve(OTHER, gateway.vault_address, 10_000)
        with pytest.raises(TransferRejectedError):
            vault.deposit(token.address, OTHER, 5_001)
        assert token.balance_of(OTHER) == 5_000
        assert vault.get_balance_deposit(token.address, OTHER) == 0

    def test_deposit_of_unregistered_token_is_rejected(self, vault):
        with pytest.raises(TransferRejectedError):
            vault.deposit("0xunknowntoken", GRANTOR, 1)

    def test_caller_can_retry_after_approving(self, vault, token, gateway):
        with pytest.raises(TransferRejectedError):
            vault.deposit(token.address, GRANTOR, 100)
        token.approve(GRANTOR, gateway.vault_address, 100)
        assert vault.deposit(token.address, GRANTOR, 100) == 100

    @pytest.mark.parametrize("amount", [0, -1, 1.5, "100", True, config.MAX_UINT + 1])
    def test_invalid_amounts(self, vault, token, amount):
        with pytest.raises(InvalidArgumentError):
            vault.deposit(token.address, GRANTOR, amount)

    @pytest.mark.parametrize("token_id", ["", "   ", None, "0x" + "0" * 40])
    def test_invalid_token_ids(self, vault, token_id):
        with pytest.raises(InvalidArgumentError):
            vault.deposit(token_id, GRANTOR, 1)

    def test_identifiers_are_case_insensitive(self, vault, token, fund):
        fund(10)
        assert vault.get_balance_deposit(token.address.upper(), GRANTOR.upper()) == 10


class TestGrantVesting:
    def test_grant_moves_deposit_into_grant(self, vault, token, gateway, fund, assert_conserved):
        fund(1500)
        event = grant_default(vault, token)
        assert event.event_type == NEW_GRANT
        assert event.cliff_time == START + 10 * DAY
        assert event.end_time == START + 100 * DAY

        assert vault.get_balance_deposit(token.address, GRANTOR) == 500
        grant = vault.get_grant(token.address, GRANTOR, BENEFICIARY)
        assert grant.vested_amount == 1000
        assert grant.withdrawn_amount == 0
        # Committing moves no tokens
        assert gateway.custody_balance(token.address) == 1500
        assert vault.total_locked(token.address) == 1000
        assert_conserved()

    def test_insufficient_deposit(self, vault, token, fund):
        fund(999)
        with pytest.raises(InsufficientBalanceError):
            grant_default(vault, token)
        assert vault.get_balance_deposit(token.address, GRANTOR) == 999
        assert vault.get_grant(token.address, GRANTOR, BENEFICIARY) is None

    def test_second_grant_for_same_pair_is_rejected(self, vault, token, fund):
        fund(2000)
        grant_default(vault, token)
        with pytest.raises(GrantAlreadyExistsError):
            grant_default(vault, token, amount=500)
        assert vault.get_balance_deposit(token.address, GRANTOR) == 1000
        assert len(vault.events_of(NEW_GRANT)) == 1

    def test_grants_to_different_beneficiaries_coexist(self, vault, token, fund):
        fund(2000)
        grant_default(vault, token)
        grant_default(vault, token, beneficiary=OTHER)
        assert vault.total_locked(token.address) == 2000

    def test_cliff_longer_than_period(self, vault, token, fund):
        fund(1000)
        with pytest.raises(InvalidArgumentError):
            grant_default(vault, token, period=10 * DAY, cliff=11 * DAY)

    @pytest.mark.parametrize("beneficiary", ["", None, "0x" + "0" * 40])
    def test_invalid_beneficiary(self, vault, token, fund, beneficiary):
        fund(1000)
        with pytest.raises(InvalidArgumentError):
            grant_default(vault, token, beneficiary=beneficiary)

    def test_zero_amount(self, vault, token, fund):
        fund(1000)
        with pytest.raises(InvalidArgumentError):
            grant_default(vault, token, amount=0)

    def test_amount_times_period_must_fit(self, vault, token):
        with pytest.raises(InvalidArgumentError):
            grant_default(vault, token, amount=config.MAX_UINT // 2, period=3, cliff=0)

    def test_large_amount_with_zero_period_is_allowed(self, vault, token, gateway):
        big = 10**30
        token.mint("0xissuer", GRANTOR, big)
        token.approve(GRANTOR, gateway.vault_address, big)
        vault.deposit(token.address, GRANTOR, big)
        grant_default(vault, token, amount=big, period=0, cliff=0)
        assert vault.get_balance_vesting(token.address, GRANTOR, BENEFICIARY) == big

    def test_end_time_overflow(self, vault, token, fund):
        fund(1)
        with pytest.raises(ArithmeticOverflowError):
            grant_default(vault, token, amount=1, start=config.MAX_UINT - 5, period=10, cliff=0)
        assert vault.get_balance_deposit(token.address, GRANTOR) == 1

    def test_grant_validation_happens_before_existence_check(self, vault, token, fund):
        fund(2000)
        grant_default(vault, token)
        with pytest.raises(InvalidArgumentError):
            grant_default(vault, token, amount=0)


class TestWithdraw:
    def test_release_scenario(self, vault, token, clock, fund, assert_conserved):
        fund(1000)
        grant_default(vault, token)

        clock.set(START + 5 * DAY)
        assert vault.get_balance_vesting(token.address, GRANTOR, BENEFICIARY) == 0
        clock.set(START + 10 * DAY)
        assert vault.get_balance_vesting(token.address, GRANTOR, BENEFICIARY) == 100
        clock.set(START + 50 * DAY)
        assert vault.get_balance_vesting(token.address, GRANTOR, BENEFICIARY) == 500
        assert vault.get_balance_vesting(
            token.address, GRANTOR, BENEFICIARY, current_time=START + 150 * DAY
        ) == 1000

        assert vault.withdraw(token.address, GRANTOR, BENEFICIARY) == 500
        assert token.balance_of(BENEFICIARY) == 500
        assert vault.get_grant(token.address, GRANTOR, BENEFICIARY).withdrawn_amount == 500
        assert_conserved()

        clock.set(START + 150 * DAY)
        assert vault.get_balance_vesting(token.address, GRANTOR, BENEFICIARY) == 500
        assert vault.withdraw(token.address, GRANTOR, BENEFICIARY) == 500
        assert token.balance_of(BENEFICIARY) == 1000
        assert_conserved()

    def test_fully_withdrawn_grant_is_removed(self, vault, token, clock, fund):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 100 * DAY)
        vault.withdraw(token.address, GRANTOR, BENEFICIARY)

        assert vault.get_grant(token.address, GRANTOR, BENEFICIARY) is None
        assert vault.get_balance_vesting(token.address, GRANTOR, BENEFICIARY) == 0
        (event,) = vault.events_of(WITHDRAW)
        assert event.completed
        assert event.withdrawn_total == 1000
        # The pair can be granted again once the first grant resolved
        fund(10)
        grant_default(vault, token, amount=10)

    def test_withdraw_before_cliff_is_noop(self, vault, token, clock, fund):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 9 * DAY)
        assert vault.withdraw(token.address, GRANTOR, BENEFICIARY) == 0
        assert token.balance_of(BENEFICIARY) == 0
        assert vault.events_of(WITHDRAW) == []
        assert vault.get_grant(token.address, GRANTOR, BENEFICIARY).withdrawn_amount == 0

    def test_withdraw_before_cliff_under_reject_policy(self, gateway, token, clock):
        vault = VestingVault(gateway, time_provider=clock.now, reject_zero_withdrawal=True)
        token.approve(GRANTOR, gateway.vault_address, 1000)
        vault.deposit(token.address, GRANTOR, 1000)
        grant_default(vault, token)
        clock.set(START + 9 * DAY)
        with pytest.raises(NothingToWithdrawError):
            vault.withdraw(token.address, GRANTOR, BENEFICIARY)
        clock.set(START + 10 * DAY)
        assert vault.withdraw(token.address, GRANTOR, BENEFICIARY) == 100

    def test_repeat_withdraw_at_same_instant_releases_nothing(self, vault, token, clock, fund):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 30 * DAY)
        assert vault.withdraw(token.address, GRANTOR, BENEFICIARY) == 300
        assert vault.withdraw(token.address, GRANTOR, BENEFICIARY) == 0
        assert token.balance_of(BENEFICIARY) == 300

    def test_withdraw_without_grant(self, vault, token):
        with pytest.raises(GrantNotFoundError):
            vault.withdraw(token.address, GRANTOR, BENEFICIARY)

    def test_grantor_cannot_withdraw_for_themselves(self, vault, token, clock, fund):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 50 * DAY)
        # The caller is the beneficiary side of the key
        with pytest.raises(GrantNotFoundError):
            vault.withdraw(token.address, BENEFICIARY, GRANTOR)

    def test_rejected_payout_rolls_back(self, vault, token, clock, fund, assert_conserved):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 50 * DAY)
        token.pause("0xissuer")

        with pytest.raises(TransferRejectedError):
            vault.withdraw(token.address, GRANTOR, BENEFICIARY)
        assert vault.get_grant(token.address, GRANTOR, BENEFICIARY).withdrawn_amount == 0
        assert vault.events_of(WITHDRAW) == []

        token.unpause("0xissuer")
        assert vault.withdraw(token.address, GRANTOR, BENEFICIARY) == 500
        assert_conserved()

    def test_rejected_final_payout_restores_grant(self, vault, token, clock, fund):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 200 * DAY)
        token.pause("0xissuer")
        with pytest.raises(TransferRejectedError):
            vault.withdraw(token.address, GRANTOR, BENEFICIARY)
        assert vault.get_grant(token.address, GRANTOR, BENEFICIARY) is not None


class TestRevoke:
    def test_revoke_mid_vesting_settles_both_sides(self, vault, token, clock, fund, assert_conserved):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 40 * DAY)

        event = vault.revoke_vesting(token.address, GRANTOR, BENEFICIARY)
        assert event.event_type == GRANT_REVOKED
        assert event.released == 400
        assert event.returned == 600
        assert token.balance_of(BENEFICIARY) == 400
        assert vault.get_balance_deposit(token.address, GRANTOR) == 600
        assert vault.get_grant(token.address, GRANTOR, BENEFICIARY) is None
        assert_conserved()

    def test_revoke_after_partial_withdraw(self, vault, token, clock, fund, assert_conserved):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 20 * DAY)
        vault.withdraw(token.address, GRANTOR, BENEFICIARY)
        clock.set(START + 50 * DAY)

        event = vault.revoke_vesting(token.address, GRANTOR, BENEFICIARY)
        assert event.released == 300
        assert event.returned == 500
        # Cumulative payout equals what had unlocked at revoke time
        assert token.balance_of(BENEFICIARY) == 500
        assert_conserved()

    def test_revoke_before_cliff_returns_everything(self, vault, token, clock, fund):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 1 * DAY)
        event = vault.revoke_vesting(token.address, GRANTOR, BENEFICIARY)
        assert event.released == 0
        assert event.returned == 1000
        assert token.balance_of(BENEFICIARY) == 0
        assert vault.get_balance_deposit(token.address, GRANTOR) == 1000

    def test_revoke_after_end_pays_everything(self, vault, token, clock, fund):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 365 * DAY)
        event = vault.revoke_vesting(token.address, GRANTOR, BENEFICIARY)
        assert event.released == 1000
        assert event.returned == 0
        assert vault.get_balance_deposit(token.address, GRANTOR) == 0

    def test_revoke_missing_grant(self, vault, token):
        with pytest.raises(GrantNotFoundError):
            vault.revoke_vesting(token.address, GRANTOR, BENEFICIARY)

    def test_revoke_twice(self, vault, token, fund):
        fund(1000)
        grant_default(vault, token)
        vault.revoke_vesting(token.address, GRANTOR, BENEFICIARY)
        with pytest.raises(GrantNotFoundError):
            vault.revoke_vesting(token.address, GRANTOR, BENEFICIARY)

    def test_only_the_grantor_side_can_revoke(self, vault, token, fund):
        fund(1000)
        grant_default(vault, token)
        with pytest.raises(GrantNotFoundError):
            vault.revoke_vesting(token.address, OTHER, BENEFICIARY)
        assert vault.get_grant(token.address, GRANTOR, BENEFICIARY) is not None

    def test_rejected_revoke_payout_changes_nothing(self, vault, token, clock, fund):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 50 * DAY)
        token.pause("0xissuer")
        with pytest.raises(TransferRejectedError):
            vault.revoke_vesting(token.address, GRANTOR, BENEFICIARY)
        assert vault.get_grant(token.address, GRANTOR, BENEFICIARY).withdrawn_amount == 0
        assert vault.get_balance_deposit(token.address, GRANTOR) == 0
        assert vault.events_of(GRANT_REVOKED) == []

    def test_revoked_remainder_can_fund_new_grant(self, vault, token, clock, fund):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 50 * DAY)
        vault.revoke_vesting(token.address, GRANTOR, BENEFICIARY)
        grant_default(vault, token, amount=500, start=clock.now())
        assert vault.get_balance_deposit(token.address, GRANTOR) == 0


class _ReenteringGateway:
    """Wraps a gateway and calls back into the vault during payouts."""

    def __init__(self, inner, action):
        self.inner = inner
        self.action = action
        self.vault = None
        self.observed = []

    def pull_in(self, token_id, from_id, amount):
        self.inner.pull_in(token_id, from_id, amount)

    def push_out(self, token_id, to_id, amount):
        self.observed.append(self.action(self.vault, token_id))
        self.inner.push_out(token_id, to_id, amount)

    def custody_balance(self, token_id):
        return self.inner.custody_balance(token_id)


class TestReentrancy:
    def _vault(self, gateway, token, clock, action):
        reentering = _ReenteringGateway(gateway, action)
        vault = VestingVault(reentering, time_provider=clock.now, reject_zero_withdrawal=False)
        reentering.vault = vault
        token.approve(GRANTOR, gateway.vault_address, 1000)
        vault.deposit(token.address, GRANTOR, 1000)
        grant_default(vault, token)
        clock.set(START + 50 * DAY)
        return vault, reentering

    def test_reentrant_withdraw_is_refused(self, gateway, token, clock):
        vault, _ = self._vault(
            gateway, token, clock,
            lambda v, tok: v.withdraw(tok, GRANTOR, BENEFICIARY),
        )
        with pytest.raises(ReentrantCallError):
            vault.withdraw(token.address, GRANTOR, BENEFICIARY)
        assert vault.get_grant(token.address, GRANTOR, BENEFICIARY).withdrawn_amount == 0
        assert token.balance_of(BENEFICIARY) == 0

    def test_reads_during_payout_see_committed_bookkeeping(self, gateway, token, clock):
        vault, reentering = self._vault(
            gateway, token, clock,
            lambda v, tok: v.get_balance_vesting(tok, GRANTOR, BENEFICIARY),
        )
        assert vault.withdraw(token.address, GRANTOR, BENEFICIARY) == 500
        # The withdrawn counter was bumped before the external transfer ran
        assert reentering.observed == [0]

    @pytest.mark.parametrize(
        "reenter",
        [
            lambda v, tok: v.revoke_vesting(tok, GRANTOR, BENEFICIARY),
            lambda v, tok: v.withdraw(tok, GRANTOR, BENEFICIARY),
        ],
        ids=["revoke", "withdraw"],
    )
    def test_reentrant_call_during_revoke_is_refused(self, gateway, token, clock, reenter):
        vault, _ = self._vault(gateway, token, clock, reenter)
        with pytest.raises(ReentrantCallError):
            vault.revoke_vesting(token.address, GRANTOR, BENEFICIARY)
        grant = vault.get_grant(token.address, GRANTOR, BENEFICIARY)
        assert grant is not None
        assert grant.withdrawn_amount == 0
        assert vault.get_balance_deposit(token.address, GRANTOR) == 0
        assert token.balance_of(BENEFICIARY) == 0
        assert vault.events_of(GRANT_REVOKED) == []
        assert gateway.custody_balance(token.address) == vault.total_liabilities(token.address)

    def test_reads_during_revoke_payout_see_committed_bookkeeping(self, gateway, token, clock):
        vault, reentering = self._vault(
            gateway, token, clock,
            lambda v, tok: v.get_balance_vesting(tok, GRANTOR, BENEFICIARY),
        )
        event = vault.revoke_vesting(token.address, GRANTOR, BENEFICIARY)
        assert event.released == 500
        assert event.returned == 500
        # The withdrawn counter was bumped before the external transfer ran
        assert reentering.observed == [0]
        assert vault.get_grant(token.address, GRANTOR, BENEFICIARY) is None
        assert vault.get_balance_deposit(token.address, GRANTOR) == 500


class TestHistoricalReads:
    def test_instant_before_last_withdrawal_reads_zero(self, vault, token, clock, fund):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 50 * DAY)
        vault.withdraw(token.address, GRANTOR, BENEFICIARY)

        at = START + 20 * DAY
        assert vault.get_balance_vesting(token.address, GRANTOR, BENEFICIARY, current_time=at) == 0
        view = vault.describe_grant(token.address, GRANTOR, BENEFICIARY, current_time=at)
        assert view["unlocked"] == 200
        assert view["releasable"] == 0
        assert vault.get_balance_vesting(
            token.address, GRANTOR, BENEFICIARY, current_time=START + 70 * DAY
        ) == 200

    def test_mutations_still_refuse_a_regressed_clock(self, vault, token, clock, fund):
        fund(1000)
        grant_default(vault, token)
        clock.set(START + 50 * DAY)
        vault.withdraw(token.address, GRANTOR, BENEFICIARY)
        clock.set(START + 20 * DAY)
        assert vault.get_balance_vesting(token.address, GRANTOR, BENEFICIARY) == 0
        with pytest.raises(ArithmeticOverflowError):
            vault.withdraw(token.address, GRANTOR, BENEFICIARY)
        assert vault.get_grant(token.address, GRANTOR, BENEFICIARY).withdrawn_amount == 500
