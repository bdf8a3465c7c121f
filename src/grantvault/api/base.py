"""
Base utilities for the vault API blueprints.

Provides the request-scoped vault lookup and the response helpers shared by
the routes.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from flask import current_app, jsonify, request

from grantvault.core.exceptions import (
    ArithmeticOverflowError,
    GrantAlreadyExistsError,
    GrantNotFoundError,
    InsufficientBalanceError,
    InvalidArgumentError,
    NothingToWithdrawError,
    ReentrantCallError,
    TransferRejectedError,
    VestingError,
)

logger = logging.getLogger(__name__)

VAULT_EXTENSION = "grantvault.vault"

# Most specific classes first
_ERROR_STATUS: Tuple[Tuple[type, int], ...] = (
    (InvalidArgumentError, 400),
    (NothingToWithdrawError, 400),
    (ArithmeticOverflowError, 400),
    (GrantNotFoundError, 404),
    (GrantAlreadyExistsError, 409),
    (ReentrantCallError, 409),
    (InsufficientBalanceError, 422),
    (TransferRejectedError, 422),
)


def get_vault() -> Any:
    """Get the VestingVault registered on the current app."""
    return current_app.extensions[VAULT_EXTENSION]


def success_response(payload: Dict[str, Any], status: int = 200) -> Tuple[Any, int]:
    """Return a success payload with consistent structure."""
    body = {"success": True, **payload}
    return jsonify(body), status


def error_response(
    message: str,
    status: int = 400,
    code: str = "bad_request",
    context: Optional[Dict[str, Any]] = None,
) -> Tuple[Any, int]:
    """Return an error payload and log it."""
    level = logging.ERROR if status >= 500 else logging.WARNING
    logger.log(
        level,
        "Vault API error",
        extra={"event": "api.error", "code": code, "status": status, "path": request.path, **(context or {})},
    )
    return jsonify({"success": False, "error": message, "code": code}), status


def vesting_error_response(error: VestingError) -> Tuple[Any, int]:
    """Map a vault error to its HTTP status."""
    for error_type, status in _ERROR_STATUS:
        if isinstance(error, error_type):
            return error_response(error.message, status=status, code=error.code)
    return error_response("Internal server error", status=500, code="internal_error",
                          context={"error": str(error)})


def get_json_body() -> Dict[str, Any]:
    """Return the request JSON object or raise InvalidArgumentError."""
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise InvalidArgumentError("request body must be a JSON object")
    return body


def require_field(body: Dict[str, Any], name: str) -> Any:
    if name not in body or body[name] is None:
        raise InvalidArgumentError(f"missing field: {name}", details={"field": name})
    return body[name]


def require_int_field(body: Dict[str, Any], name: str, default: Optional[int] = None) -> int:
    """Read an integer field; numeric strings are accepted for large amounts."""
    if default is not None and body.get(name) is None:
        return default
    value = require_field(body, name)
    if isinstance(value, bool):
        raise InvalidArgumentError(f"{name} must be an integer", details={"field": name})
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if not isinstance(value, int):
        raise InvalidArgumentError(f"{name} must be an integer", details={"field": name})
    return value
