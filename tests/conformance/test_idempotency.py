"""
Idempotency Conformance Tests

INVARIANT: Duplicate submission is detected and prevented.

    ∀ transaction T:
        submit(T) = accepted ⟹ submit(T) again raises DUPLICATE_TRANSACTION
        state after second submit = state after first submit

Transaction ids are unique per network, so a retry of the same frozen
transaction can never apply twice or charge a second fee.
"""

import asyncio
import pytest
from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st

from token_harness import (
    LocalNetwork, Status, NetworkRejectionError,
    create_transfer_token_tx, validate_and_prefill_balance,
)

from tests.helpers import make_account, context_for, setup_token, token_balances


def _snapshot(network, token_id, accounts):
    return (
        token_balances(network, token_id, accounts),
        [network.get_hbar_balance(a.account_id) for a in accounts],
        len(network.transaction_log),
    )


class TestIdempotencyProperties:
    """Property-based idempotency tests."""

    @given(st.integers(min_value=1, max_value=5))
    @settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_repeated_submission_applies_once(self, num_repeats):
        """
        PROPERTY: Submitting the same transaction N times applies it once.
        """
        async def scenario():
            network = LocalNetwork("test", verbose=False)
            alice = make_account(network)
            bob = make_account(network)
            token_id = await setup_token(network, alice, 1000, holders=[bob])
            ctx = context_for(network, alice)

            tx = create_transfer_token_tx(100, token_id, alice, bob.account_id, ctx)
            receipt = await (await tx.execute(ctx)).get_receipt(ctx)
            assert receipt.status is Status.SUCCESS
            after_first = _snapshot(network, token_id, [alice, bob])

            for _ in range(num_repeats):
                with pytest.raises(NetworkRejectionError) as excinfo:
                    await tx.execute(ctx)
                assert excinfo.value.status is Status.DUPLICATE_TRANSACTION

            assert _snapshot(network, token_id, [alice, bob]) == after_first
            assert token_balances(network, token_id, [alice, bob]) == [900, 100]

        asyncio.run(scenario())

    @given(st.lists(st.integers(min_value=1, max_value=50), min_size=1, max_size=10))
    @settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_different_transactions_independent(self, amounts):
        """
        PROPERTY: Distinct transactions with identical content are not
        duplicates of each other.
        """
        async def scenario():
            network = LocalNetwork("test", verbose=False)
            alice = make_account(network)
            bob = make_account(network)
            token_id = await setup_token(network, alice, 1000, holders=[bob])
            ctx = context_for(network, alice)

            ids = set()
            for amount in amounts:
                tx = create_transfer_token_tx(amount, token_id, alice, bob.account_id, ctx)
                await (await tx.execute(ctx)).get_receipt(ctx)
                ids.add(tx.transaction_id)

            assert len(ids) == len(amounts)
            assert network.get_token_balance(bob.account_id, token_id) == sum(amounts)

        asyncio.run(scenario())


class TestDuplicateOfRejectedTransaction:
    """A transaction that failed validation still consumed its id."""

    @pytest.mark.asyncio
    async def test_failed_transaction_cannot_be_retried(self, network):
        alice = make_account(network)
        bob = make_account(network)
        token_id = await setup_token(network, alice, 10, holders=[bob])
        ctx = context_for(network, alice)

        tx = create_transfer_token_tx(50, token_id, alice, bob.account_id, ctx)
        receipt = await (await tx.execute(ctx)).get_receipt(ctx, validate=False)
        assert receipt.status is Status.INSUFFICIENT_TOKEN_BALANCE
        fee_charged_once = network.get_hbar_balance(alice.account_id)

        with pytest.raises(NetworkRejectionError, match="DUPLICATE_TRANSACTION"):
            await tx.execute(ctx)
        assert network.get_hbar_balance(alice.account_id) == fee_charged_once

    @pytest.mark.asyncio
    async def test_receipt_lookups_are_stable(self, network):
        alice = make_account(network)
        bob = make_account(network)
        token_id = await setup_token(network, alice, 10, holders=[bob])
        ctx = context_for(network, alice)

        response = await create_transfer_token_tx(5, token_id, alice, bob.account_id, ctx).execute(ctx)
        first = await response.get_receipt(ctx)
        second = await response.get_receipt(ctx)
        assert first == second
        assert await response.get_record(ctx) == await response.get_record(ctx)


class TestPrefillIdempotency:
    """Prefilling an account twice transfers once."""

    @pytest.mark.asyncio
    async def test_prefill_twice(self, network):
        funder = make_account(network, balance=1000)
        target = make_account(network, balance=3)
        ctx = context_for(network, funder)

        assert await validate_and_prefill_balance(target.account_id, 50, ctx) is not None
        balances = (network.get_hbar_balance(funder.account_id), network.get_hbar_balance(target.account_id))
        assert await validate_and_prefill_balance(target.account_id, 50, ctx) is None
        assert (network.get_hbar_balance(funder.account_id), network.get_hbar_balance(target.account_id)) == balances
