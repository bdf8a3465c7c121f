"""
Linear release schedule with a cliff.

Tokens accrue linearly from ``start_time`` to ``end_time`` but stay locked
until ``cliff_time``. Crossing the cliff unlocks everything accrued so far in
one step. Division floors; the remainder becomes claimable once accrual
catches up because ``withdrawn_amount`` tracks exactly what was paid.
"""

from __future__ import annotations

from . import safe_math
from .ledger import Grant


def vested_to_date(grant: Grant, now: int) -> int:
    """Cumulative amount unlocked at ``now``, including what was already withdrawn."""
    if now < grant.cliff_time:
        return 0
    if now >= grant.end_time:
        return grant.vested_amount
    # start <= cliff <= now < end, so the divisor is positive here
    elapsed = safe_math.checked_sub(now, grant.start_time)
    duration = safe_math.checked_sub(grant.end_time, grant.start_time)
    return safe_math.mul_div(grant.vested_amount, elapsed, duration)


def releasable(grant: Grant, now: int) -> int:
    """Amount the beneficiary can withdraw at ``now``."""
    if now < grant.cliff_time:
        return 0
    return safe_math.checked_sub(vested_to_date(grant, now), grant.withdrawn_amount)


def releasable_as_of(grant: Grant, when: int) -> int:
    """
    Read-side releasable amount at ``when``.

    Unlike ``releasable`` this never raises for an instant that predates what
    was already paid out; such an instant simply has nothing left to release.
    """
    unlocked = vested_to_date(grant, when)
    if unlocked <= grant.withdrawn_amount:
        return 0
    return unlocked - grant.withdrawn_amount
