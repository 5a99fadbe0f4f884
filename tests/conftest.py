"""
conftest.py - Shared pytest fixtures for harness tests

Provides common fixtures used across unit and functional tests:
- Quiet sandbox network
- Five funded accounts and an account without hbars
- Contexts with and without an operator
"""

import pytest

from token_harness import LocalNetwork, Context

from tests.helpers import make_account, context_for


@pytest.fixture
def network():
    """Quiet sandbox network."""
    net = LocalNetwork("test", verbose=False)
    yield net
    net.close()


@pytest.fixture
def accounts(network):
    """Five accounts holding 1000 hbar each."""
    return [make_account(network) for _ in range(5)]


@pytest.fixture
def base_ctx(network):
    """Context without an operator."""
    return Context(network)


@pytest.fixture
def ctx(network, accounts):
    """Context operated by the first account."""
    return context_for(network, accounts[0])


@pytest.fixture
def poor_account(network):
    """Account holding no hbars at all."""
    return make_account(network, balance=0)
