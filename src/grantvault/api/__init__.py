"""
grantvault HTTP API

Usage:
    from grantvault.api import create_app
    app = create_app(vault)
"""

import logging
from typing import TYPE_CHECKING

from flask import Flask

from grantvault.api.base import VAULT_EXTENSION
from grantvault.api.vesting_bp import vesting_bp

if TYPE_CHECKING:
    from grantvault.core.vesting_vault import VestingVault

__all__ = ["create_app", "vesting_bp"]

logger = logging.getLogger(__name__)


def create_app(vault: "VestingVault") -> Flask:
    """Build a Flask app serving ``vault`` under /vesting."""
    app = Flask("grantvault")
    app.extensions[VAULT_EXTENSION] = vault
    app.register_blueprint(vesting_bp)
    logger.info("Vault API initialized", extra={"event": "api.initialized", "blueprints": [vesting_bp.name]})
    return app
