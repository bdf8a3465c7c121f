"""
Vesting API Blueprint

Exposes the vault's caller operations over HTTP. The acting account is taken
from the ``caller`` field of the JSON body; authenticating that account is
left to whatever sits in front of this service.

Endpoints:
- POST /vesting/deposit - Deposit tokens into custody (caller = depositor)
- POST /vesting/grants - Create a grant (caller = grantor)
- POST /vesting/grants/revoke - Revoke a grant (caller = grantor)
- POST /vesting/withdraw - Withdraw released tokens (caller = beneficiary)
- GET /vesting/grants/<token>/<grantor>/<beneficiary> - Releasable amount and grant view
- GET /vesting/deposits/<token>/<grantor> - Deposit balance
- GET /vesting/custody/<token> - Custody balance against vault liabilities
"""

from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, Response, request

from grantvault.api.base import (
    get_json_body,
    get_vault,
    require_field,
    require_int_field,
    success_response,
    vesting_error_response,
)
from grantvault.core.exceptions import InvalidArgumentError, VestingError
from grantvault.core.structured_logger import correlation_id, new_correlation_id

logger = logging.getLogger(__name__)

vesting_bp = Blueprint("vesting", __name__, url_prefix="/vesting")

CORRELATION_HEADER = "X-Correlation-ID"


@vesting_bp.before_request
def bind_correlation_id() -> None:
    """Tag every log line of this request with the caller's ID or a fresh one."""
    supplied = request.headers.get(CORRELATION_HEADER, "").strip()[:64]
    correlation_id.set(supplied or new_correlation_id())


@vesting_bp.after_request
def echo_correlation_id(response: Response) -> Response:
    response.headers[CORRELATION_HEADER] = correlation_id.get() or ""
    return response


@vesting_bp.teardown_request
def clear_correlation_id(exc: BaseException | None) -> None:
    correlation_id.set(None)


@vesting_bp.errorhandler(VestingError)
def handle_vesting_error(error: VestingError) -> Any:
    return vesting_error_response(error)


@vesting_bp.route("/deposit", methods=["POST"])
def deposit() -> Any:
    """Pull tokens from the caller into custody.

    Request Body:
        caller (str), token (str), amount (int)

    Returns:
        JSON with the caller's new deposit balance
    """
    body = get_json_body()
    balance = get_vault().deposit(
        require_field(body, "token"),
        require_field(body, "caller"),
        require_int_field(body, "amount"),
    )
    return success_response({"balance": balance})


@vesting_bp.route("/grants", methods=["POST"])
def create_grant() -> Any:
    """Commit part of the caller's deposit to a grant.

    Request Body:
        caller (str), token (str), beneficiary (str), amount (int),
        start_time (int), grant_period (int), cliff_period (int, default 0)
    """
    body = get_json_body()
    event = get_vault().grant_vesting(
        require_field(body, "token"),
        require_field(body, "caller"),
        require_field(body, "beneficiary"),
        require_int_field(body, "amount"),
        require_int_field(body, "start_time"),
        require_int_field(body, "grant_period"),
        require_int_field(body, "cliff_period", default=0),
    )
    return success_response({"event": event.to_dict()}, status=201)


@vesting_bp.route("/grants/revoke", methods=["POST"])
def revoke_grant() -> Any:
    """Revoke the caller's grant to ``beneficiary``."""
    body = get_json_body()
    event = get_vault().revoke_vesting(
        require_field(body, "token"),
        require_field(body, "caller"),
        require_field(body, "beneficiary"),
    )
    return success_response({"event": event.to_dict()})


@vesting_bp.route("/withdraw", methods=["POST"])
def withdraw() -> Any:
    """Withdraw whatever has unlocked on the grant from ``grantor`` to the caller."""
    body = get_json_body()
    released = get_vault().withdraw(
        require_field(body, "token"),
        require_field(body, "grantor"),
        require_field(body, "caller"),
    )
    return success_response({"released": released})


@vesting_bp.route("/grants/<token>/<grantor>/<beneficiary>", methods=["GET"])
def get_grant(token: str, grantor: str, beneficiary: str) -> Any:
    """Releasable amount now, plus the grant itself when one is live.

    Query Parameters:
        at (int, optional): Evaluate at this timestamp instead of now
    """
    at = request.args.get("at")
    current_time = None
    if at is not None:
        if not at.isdigit():
            raise InvalidArgumentError("at must be a unix timestamp", details={"field": "at"})
        current_time = int(at)

    # One read so both fields describe the same instant
    grant = get_vault().describe_grant(token, grantor, beneficiary, current_time)
    return success_response({"releasable": grant["releasable"] if grant else 0, "grant": grant})


@vesting_bp.route("/deposits/<token>/<grantor>", methods=["GET"])
def get_deposit(token: str, grantor: str) -> Any:
    return success_response({"balance": get_vault().get_balance_deposit(token, grantor)})


@vesting_bp.route("/custody/<token>", methods=["GET"])
def get_custody(token: str) -> Any:
    """Gateway custody balance next to what the vault owes for ``token``."""
    vault = get_vault()
    custody = vault.gateway.custody_balance(token.lower())
    liabilities = vault.total_liabilities(token)
    return success_response(
        {
            "custody": custody,
            "liabilities": liabilities,
            "locked": vault.total_locked(token),
            "balanced": custody == liabilities,
        }
    )
