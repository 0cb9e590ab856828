"""
conftest.py - Shared pytest fixtures for TokenLedger tests

Provides common fixtures used across unit, conformance and functional tests:
- Fresh ledgers (bootstrap admin only)
- Ledgers with a registered minter
- Funded ledgers (one mint already applied)
- Invariant helpers
"""

import pytest
from datetime import datetime

from tokenledger import TokenLedger, BOOTSTRAP_ADMIN


# Principals used throughout the suite
DEPLOYER = BOOTSTRAP_ADMIN
MINTER = "wallet_1"
USER1 = "wallet_2"
USER2 = "wallet_3"

START_TIME = datetime(2025, 1, 1)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def assert_supply_conserved(ledger: TokenLedger) -> None:
    """Fail with the full report if conservation or non-negativity is broken."""
    report = ledger.verify_supply()
    assert report['valid'], report


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Fresh ledger: deployer is admin and the only minter."""
    return TokenLedger(initial_time=START_TIME, verbose=False)


@pytest.fixture
def minter_ledger(ledger):
    """Ledger with wallet_1 registered as a minter."""
    ledger.add_minter(DEPLOYER, MINTER)
    return ledger


@pytest.fixture
def funded_ledger(minter_ledger):
    """Ledger where wallet_1 has minted 1,000,000 base units to wallet_2."""
    minter_ledger.mint(MINTER, 1_000_000, USER1, "Test mint")
    return minter_ledger
