"""
Vault core: ledger tables, release schedule, custody gateway and the grant
lifecycle controller.
"""
