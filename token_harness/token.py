"""
token.py - Token Builder and Multi-Party Transfer Builder

Business-level helpers over the token service:
1. create_token: fungible token with the operator as treasury and admin
2. mint_token: raise a mintable token's supply, signed by the supply key
3. is_associated / associate_account: token relationship check and setup
4. create_transfer_token_tx / transfer_token: two-party transfers
5. create_multi_party_transfer_token_tx: N signed deltas in one atomic
   transaction, co-signed by every debited account
6. require_token_balance: token balance lookup that fails as an assertion

Builders that only build are synchronous. Anything that talks to the network
is a coroutine. Callers always pass a Context (or a Network) explicitly.

Accounts are any object with `account_id` and `private_key` attributes,
typically config.Account.
"""

from __future__ import annotations
from typing import List, Optional, Protocol, Sequence, Union
import logging

from .client import Context
from .core import (
    AccountId, TokenId, AccountBalance, Network,
    AssociationMissingError, MalformedTransferError,
)
from .keys import PrivateKey
from .queries import AccountBalanceQuery
from .transactions import (
    TokenAssociateTransaction, TokenCreateTransaction, TokenMintTransaction,
    TransactionResponse, TransferTransaction,
)

logger = logging.getLogger(__name__)


class AccountLike(Protocol):
    account_id: AccountId
    private_key: PrivateKey


def account_context(ctx: Context, account: AccountLike) -> Context:
    """Context on ctx's network with `account` as operator (payer and signer)."""
    return ctx.with_operator(account.account_id, account.private_key)


def _require_positive_int(value: int, name: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")


# ============================================================================
# TOKEN LIFECYCLE
# ============================================================================

async def create_token(
    name: str,
    symbol: str,
    decimals: int,
    is_mintable: bool,
    ctx: Context,
    initial_supply: Optional[int] = None,
) -> TransactionResponse:
    """
    Create a fungible token owned by the context operator.

    The operator account becomes the treasury and the operator public key the
    admin key. A mintable token also gets the operator key as supply key;
    without it the supply stays at initial_supply forever.

    Args:
        name: Token name, e.g. "Test Token"
        symbol: Token symbol, e.g. "HTT"
        decimals: Number of decimal places of the base unit
        is_mintable: Whether the operator key becomes the supply key
        ctx: Context with an operator
        initial_supply: Fixed starting supply in base units (default 0)

    Returns:
        TransactionResponse; the receipt carries the new token id

    Raises:
        NoOperatorError: If ctx has no operator (before any network call)
        ValueError: If initial_supply is negative or not an integer
    """
    operator = ctx.require_operator()
    tx = (
        TokenCreateTransaction()
        .set_token_name(name)
        .set_token_symbol(symbol)
        .set_decimals(decimals)
        .set_treasury_account_id(operator.account_id)
        .set_admin_key(operator.public_key)
    )
    if initial_supply is not None:
        if not isinstance(initial_supply, int) or isinstance(initial_supply, bool) or initial_supply < 0:
            raise ValueError(f"initial_supply must be a non-negative integer, got {initial_supply!r}")
        tx.set_initial_supply(initial_supply)
    if is_mintable:
        tx.set_supply_key(operator.public_key)

    logger.info("creating token %s (%s) treasury=%s mintable=%s",
                name, symbol, operator.account_id, is_mintable)
    return await tx.execute(ctx)


async def mint_token(
    amount: int,
    token_id: Union[TokenId, str],
    supply_key: PrivateKey,
    ctx: Context,
) -> TransactionResponse:
    """
    Mint `amount` base units into the token's treasury.

    A token without a supply key is not detected here: the network rejects
    the mint and the receipt carries TOKEN_HAS_NO_SUPPLY_KEY.

    Raises:
        ValueError: If amount is not a positive integer
        NoOperatorError: If ctx has no operator
    """
    _require_positive_int(amount, "amount")
    tx = (
        TokenMintTransaction()
        .set_token_id(token_id)
        .set_amount(amount)
        .freeze_with(ctx)
        .sign(supply_key)
    )
    return await tx.execute(ctx)


async def is_associated(account: AccountLike, token_id: Union[TokenId, str], ctx: Context) -> bool:
    """Whether the account's balance lists the token."""
    token_id = TokenId.coerce(token_id)
    balance = await AccountBalanceQuery().set_account_id(account.account_id).execute(ctx)
    return token_id in balance.tokens


async def associate_account(
    account: AccountLike,
    token_id: Union[TokenId, str],
    ctx: Context,
) -> TransactionResponse:
    """
    Associate `account` with a token, signed by the account's key.

    When ctx has no operator, a context scoped to the account is used, so the
    account pays. Associating twice is not prevented here; the network
    rejects the second one with TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT.
    """
    submit_ctx = ctx if ctx.operator is not None else account_context(ctx, account)
    tx = (
        TokenAssociateTransaction()
        .set_account_id(account.account_id)
        .set_token_ids([token_id])
        .freeze_with(submit_ctx)
        .sign(account.private_key)
    )
    return await tx.execute(submit_ctx)


# ============================================================================
# TRANSFERS
# ============================================================================

def create_transfer_token_tx(
    amount: int,
    token_id: Union[TokenId, str],
    sender: AccountLike,
    receiver_id: Union[AccountId, str],
    ctx: Context,
) -> TransferTransaction:
    """
    Build a frozen transfer of `amount` from sender to receiver, signed by sender.

    The payer is ctx's operator. When ctx has no operator, a context scoped to
    the sender is used, making the sender the payer. Balance sufficiency is
    left to the network.

    Raises:
        ValueError: If amount is not a positive integer
    """
    _require_positive_int(amount, "amount")
    freeze_ctx = ctx if ctx.operator is not None else account_context(ctx, sender)
    tx = (
        TransferTransaction()
        .add_token_transfer(token_id, sender.account_id, -amount)
        .add_token_transfer(token_id, receiver_id, amount)
        .freeze_with(freeze_ctx)
        .sign(sender.private_key)
    )
    return tx


async def transfer_token(
    amount: int,
    token_id: Union[TokenId, str],
    sender: AccountLike,
    receiver_id: Union[AccountId, str],
    network: Network,
) -> TransactionResponse:
    """Build, sign and submit a transfer paid by the sender."""
    sender_ctx = Context(network).with_operator(sender.account_id, sender.private_key)
    tx = create_transfer_token_tx(amount, token_id, sender, receiver_id, sender_ctx)
    return await tx.execute(sender_ctx)


def required_signers(amounts: Sequence[int], accounts: Sequence[AccountLike]) -> List[AccountLike]:
    """
    Accounts that must co-sign a multi-party transfer.

    Exactly the accounts with a strictly negative delta, in input order,
    each listed once.
    """
    signers: List[AccountLike] = []
    seen = set()
    for amount, account in zip(amounts, accounts):
        if amount < 0 and account.account_id not in seen:
            seen.add(account.account_id)
            signers.append(account)
    return signers


def create_multi_party_transfer_token_tx(
    amounts: Sequence[int],
    token_id: Union[TokenId, str],
    accounts: Sequence[AccountLike],
    ctx: Context,
) -> TransferTransaction:
    """
    Build one atomic transfer moving amounts[i] for accounts[i].

    The deltas are expected to sum to zero; the network rejects an unbalanced
    transfer with TRANSFERS_NOT_ZERO_SUM_FOR_TOKEN. The transaction is frozen
    with ctx and then signed by every debited account.

    Example:
        tx = create_multi_party_transfer_token_tx(
            [-50, -50, 50, 50], token_id, [a1, a2, a3, a4], ctx)
        receipt = await (await tx.execute(ctx)).get_receipt(ctx)

    Raises:
        MalformedTransferError: If the lengths differ or fewer than two accounts
            are given (before any freeze or signature)
    """
    amounts = list(amounts)
    accounts = list(accounts)
    if len(amounts) != len(accounts):
        raise MalformedTransferError(
            f"amounts and accounts must have the same length: {len(amounts)} != {len(accounts)}"
        )
    if len(accounts) < 2:
        raise MalformedTransferError(
            f"a multi-party transfer needs at least 2 accounts, got {len(accounts)}"
        )

    tx = TransferTransaction()
    for amount, account in zip(amounts, accounts):
        tx.add_token_transfer(token_id, account.account_id, amount)
    tx.freeze_with(ctx)
    for account in required_signers(amounts, accounts):
        tx.sign(account.private_key)
    return tx


# ============================================================================
# BALANCE ASSERTIONS
# ============================================================================

def require_token_balance(balance: AccountBalance, token_id: Union[TokenId, str]) -> int:
    """
    Token balance from an AccountBalance.

    Raises:
        AssociationMissingError: If the balance has no entry for the token
    """
    token_id = TokenId.coerce(token_id)
    if token_id not in balance.tokens:
        raise AssociationMissingError(
            f"Account {balance.account_id} has no balance entry for token {token_id}"
        )
    return balance.tokens[token_id]
