"""
token_harness - Token and Topic Service Test Harness

Builders for token and topic scenarios, an SDK-style client surface and an
in-process sandbox ledger to run them against.

Usage:
    import asyncio
    from token_harness import (
        LocalNetwork, Context, PrivateKey, Account,
        create_token, associate_account, create_multi_party_transfer_token_tx,
    )

    async def scenario():
        network = LocalNetwork("sandbox", verbose=False)
        keys = [PrivateKey.generate() for _ in range(2)]
        alice, bob = (Account(network.register_account(k, 100), k) for k in keys)
        ctx = Context(network).with_operator(alice.account_id, alice.private_key)

        receipt = await (await create_token("Test Token", "HTT", 2, True, ctx)).get_receipt(ctx)
        await (await associate_account(bob, receipt.token_id, Context(network))).get_receipt(ctx)
        ...

    asyncio.run(scenario())
"""

# Core types
from .core import (
    AccountId,
    TokenId,
    TopicId,
    TransactionId,
    Hbar,
    Status,
    Receipt,
    Transfer,
    TransactionRecord,
    AccountBalance,
    AccountInfo,
    TokenRelationship,
    TokenInfo,
    TopicInfo,
    TopicMessage,
    ChunkInfo,
    Network,
    MessageStream,
    HarnessError,
    NoOperatorError,
    MalformedTransferError,
    NetworkRejectionError,
    TransactionFrozenError,
    TransactionNotFrozenError,
    ConfigurationError,
    AssociationMissingError,
    TINYBARS_PER_HBAR,
    MESSAGE_SIZE_LIMIT,
    MAX_CHUNKS,
    DEFAULT_FEE_SCHEDULE,
    GENESIS_ACCOUNT_ID,
    NODE_ACCOUNT_ID,
)

# Keys
from .keys import PrivateKey, PublicKey, KeyList

# SDK surface
from .client import Context, Operator
from .transactions import (
    Transaction,
    TransactionResponse,
    TokenCreateTransaction,
    TokenMintTransaction,
    TokenAssociateTransaction,
    TransferTransaction,
    TopicCreateTransaction,
    TopicMessageSubmitTransaction,
)
from .queries import (
    AccountBalanceQuery,
    AccountInfoQuery,
    TokenInfoQuery,
    TopicInfoQuery,
    TopicMessageQuery,
    SubscriptionHandle,
)

# Sandbox ledger
from .network import LocalNetwork, TopicMessageStream

# Builders
from .token import (
    account_context,
    create_token,
    mint_token,
    is_associated,
    associate_account,
    create_transfer_token_tx,
    transfer_token,
    required_signers,
    create_multi_party_transfer_token_tx,
    require_token_balance,
)
from .topic import threshold_key, create_topic, submit_message, subscribe_to_topic
from .prefill import validate_and_prefill_balance, prefill_accounts, PrefillResult

# Configuration
from .config import (
    Account, load_accounts, funding_account_from_env, load_environment,
    load_sandbox_state, save_sandbox_state,
)


__all__ = [
    # Identifiers and values
    'AccountId', 'TokenId', 'TopicId', 'TransactionId', 'Hbar', 'Status',
    # Results
    'Receipt', 'Transfer', 'TransactionRecord', 'AccountBalance', 'AccountInfo',
    'TokenRelationship', 'TokenInfo', 'TopicInfo', 'TopicMessage', 'ChunkInfo',
    # Protocols
    'Network', 'MessageStream',
    # Exceptions
    'HarnessError', 'NoOperatorError', 'MalformedTransferError', 'NetworkRejectionError',
    'TransactionFrozenError', 'TransactionNotFrozenError', 'ConfigurationError',
    'AssociationMissingError',
    # Constants
    'TINYBARS_PER_HBAR', 'MESSAGE_SIZE_LIMIT', 'MAX_CHUNKS', 'DEFAULT_FEE_SCHEDULE',
    'GENESIS_ACCOUNT_ID', 'NODE_ACCOUNT_ID',
    # Keys
    'PrivateKey', 'PublicKey', 'KeyList',
    # SDK surface
    'Context', 'Operator',
    'Transaction', 'TransactionResponse', 'TokenCreateTransaction', 'TokenMintTransaction',
    'TokenAssociateTransaction', 'TransferTransaction', 'TopicCreateTransaction',
    'TopicMessageSubmitTransaction',
    'AccountBalanceQuery', 'AccountInfoQuery', 'TokenInfoQuery', 'TopicInfoQuery',
    'TopicMessageQuery', 'SubscriptionHandle',
    # Sandbox
    'LocalNetwork', 'TopicMessageStream',
    # Builders
    'account_context', 'create_token', 'mint_token', 'is_associated', 'associate_account',
    'create_transfer_token_tx', 'transfer_token', 'required_signers',
    'create_multi_party_transfer_token_tx', 'require_token_balance',
    'threshold_key', 'create_topic', 'submit_message', 'subscribe_to_topic',
    'validate_and_prefill_balance', 'prefill_accounts', 'PrefillResult',
    # Configuration
    'Account', 'load_accounts', 'funding_account_from_env', 'load_environment',
    'load_sandbox_state', 'save_sandbox_state',
]

__version__ = '0.1.0'
