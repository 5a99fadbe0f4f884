"""
test_token_service.py - End-to-end token service scenarios

Tests complete token scenarios against a sandbox network:
- Mintable token creation and minting
- Fixed supply token creation, minting rejected
- Transfer between two accounts
- Transfer paid for by the recipient
- Multi-party transfer
"""

import pytest

from token_harness import (
    Context, Status, Hbar,
    AccountBalanceQuery, TokenInfoQuery,
    create_token, mint_token, is_associated, associate_account,
    create_transfer_token_tx, transfer_token,
    create_multi_party_transfer_token_tx, require_token_balance,
    NetworkRejectionError,
)

from tests.helpers import context_for


async def hbar_balance(ctx, account) -> Hbar:
    return (await AccountBalanceQuery().set_account_id(account.account_id).execute(ctx)).hbars


async def token_balance(ctx, account, token_id) -> int:
    balance = await AccountBalanceQuery().set_account_id(account.account_id).execute(ctx)
    return require_token_balance(balance, token_id)


async def hold_tokens(network, treasury, holder, token_id, amount):
    """Associate `holder` when needed and fund it from the treasury."""
    holder_ctx = context_for(network, holder)
    if not await is_associated(holder, token_id, holder_ctx):
        receipt = await (await associate_account(holder, token_id, holder_ctx)).get_receipt(holder_ctx)
        assert receipt.status is Status.SUCCESS
    if amount:
        response = await transfer_token(amount, token_id, treasury, holder.account_id, network)
        assert (await response.get_receipt(holder_ctx)).status is Status.SUCCESS
    assert await token_balance(holder_ctx, holder, token_id) == amount
    return holder_ctx


async def new_token(ctx, supply=1000):
    response = await create_token("Test Token", "HTT", 2, True, ctx, initial_supply=supply)
    return (await response.get_receipt(ctx)).token_id


class TestCreateToken:
    """Scenario: create a mintable token and a fixed supply token."""

    @pytest.mark.asyncio
    async def test_mintable_token(self, accounts, ctx):
        assert await hbar_balance(ctx, accounts[0]) > Hbar.from_hbar(10)

        receipt = await (await create_token("Test Token", "HTT", 2, True, ctx)).get_receipt(ctx)
        token_id = receipt.token_id
        assert token_id is not None

        info = await TokenInfoQuery().set_token_id(token_id).execute(ctx)
        assert info.name == "Test Token"
        assert info.symbol == "HTT"
        assert info.decimals == 2
        assert info.treasury_account_id == ctx.operator.account_id

        mint = await mint_token(100, token_id, accounts[0].private_key, ctx)
        assert (await mint.get_receipt(ctx)).status is Status.SUCCESS
        info = await TokenInfoQuery().set_token_id(token_id).execute(ctx)
        assert info.total_supply == 100

    @pytest.mark.asyncio
    async def test_fixed_supply_token(self, accounts, ctx):
        response = await create_token("Test Token", "HTT", 2, False, ctx, initial_supply=1000)
        token_id = (await response.get_receipt(ctx)).token_id

        info = await TokenInfoQuery().set_token_id(token_id).execute(ctx)
        assert info.total_supply == 1000
        assert info.supply_key is None

        mint = await mint_token(1, token_id, accounts[0].private_key, ctx)
        with pytest.raises(NetworkRejectionError, match="TOKEN_HAS_NO_SUPPLY_KEY"):
            await mint.get_receipt(ctx)
        info = await TokenInfoQuery().set_token_id(token_id).execute(ctx)
        assert info.total_supply == 1000


class TestTransferTokens:
    """Scenarios: two-party transfers with the sender or the recipient paying."""

    @pytest.mark.asyncio
    async def test_transfer_between_two_accounts(self, network, accounts, ctx):
        token_id = await new_token(ctx)
        treasury, first, second = accounts[:3]
        first_ctx = await hold_tokens(network, treasury, first, token_id, 100)
        second_ctx = await hold_tokens(network, treasury, second, token_id, 0)

        tx = create_transfer_token_tx(10, token_id, first, second.account_id, first_ctx)
        response = await tx.execute(first_ctx)
        assert (await response.get_receipt(first_ctx)).status is Status.SUCCESS

        assert await token_balance(first_ctx, first, token_id) == 90
        assert await token_balance(second_ctx, second, token_id) == 10

    @pytest.mark.asyncio
    async def test_transfer_paid_for_by_recipient(self, network, accounts, ctx):
        token_id = await new_token(ctx)
        treasury, first, second = accounts[:3]
        first_ctx = await hold_tokens(network, treasury, first, token_id, 100)
        second_ctx = await hold_tokens(network, treasury, second, token_id, 100)

        # Second account sends, first account's context freezes and pays
        tx = create_transfer_token_tx(10, token_id, second, first.account_id, first_ctx)
        response = await tx.execute(first_ctx)
        assert (await response.get_receipt(first_ctx)).status is Status.SUCCESS

        record = await response.get_record(Context(network))
        payer = [t for t in record.transfers if t.account_id == first.account_id]
        assert payer, "first account has not paid the transaction fee"
        assert payer[0].amount.is_negative()
        assert all(t.account_id != second.account_id for t in record.transfers)

        assert await token_balance(first_ctx, first, token_id) == 110
        assert await token_balance(second_ctx, second, token_id) == 90

    @pytest.mark.asyncio
    async def test_transfer_to_unassociated_account_fails(self, network, accounts, ctx):
        token_id = await new_token(ctx)
        treasury, first, stranger = accounts[0], accounts[1], accounts[4]
        first_ctx = await hold_tokens(network, treasury, first, token_id, 100)

        response = await create_transfer_token_tx(10, token_id, first, stranger.account_id, first_ctx).execute(first_ctx)
        with pytest.raises(NetworkRejectionError, match="TOKEN_NOT_ASSOCIATED_TO_ACCOUNT"):
            await response.get_receipt(first_ctx)
        assert await token_balance(first_ctx, first, token_id) == 100


class TestMultiPartyTransfer:
    """Scenario: two accounts pay out, two accounts receive, in one transaction."""

    @pytest.mark.asyncio
    async def test_fifty_out_of_two_into_two(self, network, accounts, ctx):
        treasury, first, second, third, fourth = accounts
        token_id = await new_token(ctx)

        first_ctx = await hold_tokens(network, treasury, first, token_id, 100)
        await hold_tokens(network, treasury, second, token_id, 100)
        await hold_tokens(network, treasury, third, token_id, 0)
        await hold_tokens(network, treasury, fourth, token_id, 0)

        tx = create_multi_party_transfer_token_tx(
            [-50, -50, 50, 50], token_id, [first, second, third, fourth], first_ctx,
        )
        response = await tx.execute(first_ctx)
        assert (await response.get_receipt(first_ctx)).status is Status.SUCCESS

        balances = [await token_balance(first_ctx, a, token_id) for a in (first, second, third, fourth)]
        assert balances == [50, 50, 50, 50]
        assert network.verify_conservation()['valid']
