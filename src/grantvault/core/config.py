"""
grantvault configuration

Values are read once from environment variables at import time. Tests and
embedding applications can override any of them by passing explicit
arguments to the components that consume them.
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


ZERO_RELEASE_NOOP = "noop"
ZERO_RELEASE_REJECT = "reject"
_ZERO_RELEASE_POLICIES = (ZERO_RELEASE_NOOP, ZERO_RELEASE_REJECT)


def _get_int(env_var: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{env_var} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigurationError(f"{env_var} must be >= {minimum}, got {value}")
    return value


def _get_choice(env_var: str, default: str, choices: tuple[str, ...]) -> str:
    value = os.getenv(env_var, default).strip().lower() or default
    if value not in choices:
        raise ConfigurationError(
            f"{env_var} must be one of {', '.join(choices)}, got {value!r}"
        )
    return value


# Width of the unsigned integers used for balances, amounts and timestamps
UINT_BITS = _get_int("GRANTVAULT_UINT_BITS", 256, minimum=8)
MAX_UINT = (1 << UINT_BITS) - 1

# What withdraw does when nothing has unlocked yet: succeed as a no-op or raise
ZERO_RELEASE_POLICY = _get_choice(
    "GRANTVAULT_ZERO_RELEASE_POLICY", ZERO_RELEASE_NOOP, _ZERO_RELEASE_POLICIES
)

# Account that holds custodied tokens on behalf of the vault
VAULT_ADDRESS = (
    os.getenv("GRANTVAULT_VAULT_ADDRESS", "").strip().lower()
    or "0x" + "7a" * 20
)

STATE_DIR = os.getenv("GRANTVAULT_STATE_DIR", os.path.join(os.getcwd(), "data"))

LOG_LEVEL = os.getenv("GRANTVAULT_LOG_LEVEL", "INFO").strip().upper() or "INFO"
LOG_DIR = os.getenv("GRANTVAULT_LOG_DIR", "").strip()

if LOG_LEVEL not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
    raise ConfigurationError(f"GRANTVAULT_LOG_LEVEL is not a logging level: {LOG_LEVEL!r}")


def reject_zero_withdrawal_default() -> bool:
    """Whether a withdraw that releases nothing should raise by default."""
    return ZERO_RELEASE_POLICY == ZERO_RELEASE_REJECT
