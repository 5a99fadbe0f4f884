"""
helpers.py - Test helpers shared by unit, conformance and functional tests

Builds funded accounts, contexts and ready-to-use tokens on a LocalNetwork.
"""

from typing import List, Optional, Sequence

from token_harness import (
    LocalNetwork, Context, PrivateKey, Account, TokenId,
    create_token, associate_account, transfer_token,
)


def make_account(network: LocalNetwork, balance=1000) -> Account:
    """Register a genesis-funded account with a fresh key."""
    key = PrivateKey.generate()
    account_id = network.register_account(key, balance)
    return Account(account_id, key)


def context_for(network: LocalNetwork, account: Account) -> Context:
    return Context(network).with_operator(account.account_id, account.private_key)


async def setup_token(
    network: LocalNetwork,
    treasury: Account,
    supply: int,
    holders: Sequence[Account] = (),
    holder_balance: int = 0,
    name: str = "Test Token",
    symbol: str = "HTT",
    decimals: int = 2,
    mintable: bool = True,
) -> TokenId:
    """
    Create a token owned by `treasury`, associate every holder and hand each
    holder `holder_balance` base units out of the treasury.
    """
    ctx = context_for(network, treasury)
    response = await create_token(name, symbol, decimals, mintable, ctx, initial_supply=supply)
    token_id = (await response.get_receipt(ctx)).token_id
    for holder in holders:
        holder_ctx = context_for(network, holder)
        await (await associate_account(holder, token_id, holder_ctx)).get_receipt(holder_ctx)
        if holder_balance:
            response = await transfer_token(holder_balance, token_id, treasury, holder.account_id, network)
            await response.get_receipt(ctx)
    return token_id


def token_balances(network: LocalNetwork, token_id: TokenId, accounts: Sequence[Account]) -> List[Optional[int]]:
    return [network.get_token_balance(a.account_id, token_id) for a in accounts]
