"""
Custody gateway: the only path by which value enters or leaves the vault.

The vault depends on the CustodyGateway protocol alone. TokenCustodyGateway
is the bundled implementation over in-memory FungibleTokens; any token-level
refusal is reported as TransferRejectedError so the vault can abort the
enclosing operation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from . import config
from .exceptions import TokenError, TransferRejectedError

if TYPE_CHECKING:
    from ..contracts.fungible_token import FungibleToken

logger = logging.getLogger(__name__)


@runtime_checkable
class CustodyGateway(Protocol):
    """Moves value between external holders and the vault's custody account."""

    def pull_in(self, token_id: str, from_id: str, amount: int) -> None:
        """Move ``amount`` from ``from_id`` into custody or raise TransferRejectedError."""
        ...

    def push_out(self, token_id: str, to_id: str, amount: int) -> None:
        """Move ``amount`` out of custody to ``to_id`` or raise TransferRejectedError."""
        ...

    def custody_balance(self, token_id: str) -> int:
        """Value currently held in custody for ``token_id``."""
        ...


class TokenCustodyGateway:
    """
    Gateway over a registry of FungibleTokens keyed by token address.

    Deposits are pulled with ``transfer_from`` using the vault address as the
    spender, so depositors must approve the vault first. Payouts are plain
    ``transfer`` calls from the vault address.
    """

    def __init__(
        self,
        tokens: "list[FungibleToken] | None" = None,
        vault_address: str | None = None,
    ) -> None:
        self.vault_address = (vault_address or config.VAULT_ADDRESS).lower()
        self._tokens: dict[str, "FungibleToken"] = {}
        for token in tokens or []:
            self.register_token(token)

    def register_token(self, token: "FungibleToken") -> None:
        self._tokens[token.address.lower()] = token
        logger.info(
            "Custody token registered",
            extra={"event": "custody.token_registered", "token": token.address[:10], "symbol": token.symbol},
        )

    def get_token(self, token_id: str) -> "FungibleToken | None":
        return self._tokens.get((token_id or "").lower())

    def pull_in(self, token_id: str, from_id: str, amount: int) -> None:
        token = self._require_token(token_id, amount)
        try:
            token.transfer_from(self.vault_address, from_id, self.vault_address, amount)
        except TokenError as exc:
            logger.warning(
                "Custody pull-in rejected",
                extra={"event": "custody.pull_rejected", "token": token_id[:10], "from": from_id[:10], "amount": amount, "reason": str(exc)},
            )
            raise TransferRejectedError(str(exc), token_id=token_id, amount=amount) from exc

    def push_out(self, token_id: str, to_id: str, amount: int) -> None:
        token = self._require_token(token_id, amount)
        try:
            token.transfer(self.vault_address, to_id, amount)
        except TokenError as exc:
            logger.warning(
                "Custody push-out rejected",
                extra={"event": "custody.push_rejected", "token": token_id[:10], "to": to_id[:10], "amount": amount, "reason": str(exc)},
            )
            raise TransferRejectedError(str(exc), token_id=token_id, amount=amount) from exc

    def custody_balance(self, token_id: str) -> int:
        token = self.get_token(token_id)
        return token.balance_of(self.vault_address) if token else 0

    def _require_token(self, token_id: str, amount: int) -> "FungibleToken":
        token = self.get_token(token_id)
        if token is None:
            raise TransferRejectedError(f"unknown token {token_id}", token_id=token_id, amount=amount)
        return token
