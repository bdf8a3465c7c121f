"""
Token contracts that back the vault's custody gateway.
"""

from .fungible_token import UINT256_MAX, ZERO_ADDRESS, FungibleToken, TokenEvent

__all__ = [
    "FungibleToken",
    "TokenEvent",
    "UINT256_MAX",
    "ZERO_ADDRESS",
]
