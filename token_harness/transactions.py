"""
transactions.py - Transaction Builders and Submission

Every transaction follows the same lifecycle:

    built  ->  frozen  ->  signed  ->  submitted  ->  receipt / record

1. Built: setters configure the body. Setters return self for chaining.
2. Frozen: freeze_with(ctx) fixes the transaction id (payer = ctx operator)
   and the node. The body can no longer change.
3. Signed: sign(private_key) adds an Ed25519 signature over the canonical
   body bytes. Signing requires a frozen transaction.
4. Submitted: execute(ctx) freezes (if needed), adds the ctx operator's
   signature and hands the transaction to the network. Precheck failures
   raise NetworkRejectionError immediately.
5. Receipt / record: TransactionResponse.get_receipt() / get_record().
"""

from __future__ import annotations
from typing import Dict, List, Mapping, Optional, Union, Any, FrozenSet, Iterable
import hashlib
import logging

from .client import Context
from .core import (
    AccountId, TokenId, TopicId, TransactionId, Hbar, ChunkInfo,
    Receipt, TransactionRecord, Status,
    NetworkRejectionError, TransactionFrozenError, TransactionNotFrozenError,
    TX_CRYPTO_TRANSFER, TX_TOKEN_CREATE, TX_TOKEN_MINT, TX_TOKEN_ASSOCIATE,
    TX_TOPIC_CREATE, TX_TOPIC_SUBMIT_MESSAGE,
    canonicalize,
)
from .keys import PrivateKey, PublicKey, Key

logger = logging.getLogger(__name__)


# ============================================================================
# BASE TRANSACTION
# ============================================================================

class Transaction:
    """
    Base class for all transactions.

    Subclasses set `transaction_type` and implement `_body_fields()`.
    """

    transaction_type: str = ""

    def __init__(self):
        self._transaction_id: Optional[TransactionId] = None
        self._node_account_id: Optional[AccountId] = None
        self._memo: str = ""
        self._signatures: Dict[PublicKey, bytes] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_frozen(self) -> bool:
        return self._transaction_id is not None

    @property
    def transaction_id(self) -> Optional[TransactionId]:
        return self._transaction_id

    @property
    def node_account_id(self) -> Optional[AccountId]:
        return self._node_account_id

    @property
    def memo(self) -> str:
        return self._memo

    def _require_not_frozen(self) -> None:
        if self.is_frozen:
            raise TransactionFrozenError(
                f"{type(self).__name__} {self._transaction_id} is frozen and cannot be modified"
            )

    def set_transaction_memo(self, memo: str) -> 'Transaction':
        self._require_not_frozen()
        self._memo = memo
        return self

    def freeze_with(self, ctx: Context, transaction_id: Optional[TransactionId] = None) -> 'Transaction':
        """
        Fix the transaction id and node, making the body immutable.

        The context operator becomes the payer. A transaction_id drawn earlier
        from ctx.next_transaction_id() may be passed to freeze under that id.

        Raises:
            NoOperatorError: If ctx has no operator
            TransactionFrozenError: If already frozen
        """
        self._require_not_frozen()
        self._transaction_id = transaction_id if transaction_id is not None else ctx.next_transaction_id()
        self._node_account_id = ctx.network.node_account_id
        return self

    def sign(self, private_key: PrivateKey) -> 'Transaction':
        """
        Add a signature over the canonical body bytes.

        Signing twice with the same key replaces the earlier signature.

        Raises:
            TransactionNotFrozenError: If the transaction is not frozen yet
        """
        if not self.is_frozen:
            raise TransactionNotFrozenError(
                f"{type(self).__name__} must be frozen before it is signed"
            )
        self._signatures[private_key.public_key] = private_key.sign(self.body_bytes())
        return self

    @property
    def signatures(self) -> Mapping[PublicKey, bytes]:
        return dict(self._signatures)

    @property
    def signer_keys(self) -> FrozenSet[PublicKey]:
        return frozenset(self._signatures)

    # ------------------------------------------------------------------
    # Body
    # ------------------------------------------------------------------

    def _body_fields(self) -> Dict[str, Any]:
        raise NotImplementedError

    def body(self) -> Dict[str, Any]:
        body = {
            "type": self.transaction_type,
            "transaction_id": self._transaction_id,
            "node_account_id": self._node_account_id,
            "memo": self._memo,
        }
        body.update(self._body_fields())
        return body

    def body_bytes(self) -> bytes:
        return canonicalize(self.body()).encode("utf-8")

    def transaction_hash(self) -> str:
        """SHA-384 hex digest of the canonical body bytes."""
        return hashlib.sha384(self.body_bytes()).hexdigest()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def execute(self, ctx: Context) -> 'TransactionResponse':
        """
        Submit the transaction through ctx.

        Freezes with ctx when not yet frozen and signs with the ctx operator.

        Returns:
            TransactionResponse for fetching the receipt and record

        Raises:
            NoOperatorError: If ctx has no operator and the transaction is not frozen
            NetworkRejectionError: If the network rejects the transaction at precheck
        """
        if not self.is_frozen:
            self.freeze_with(ctx)
        if ctx.operator is not None and ctx.operator.public_key not in self._signatures:
            self.sign(ctx.operator.private_key)
        transaction_id = await ctx.network.submit(self)
        logger.debug("submitted %s %s", self.transaction_type, transaction_id)
        return TransactionResponse(transaction_id, self.transaction_hash())

    def __repr__(self) -> str:
        state = str(self._transaction_id) if self.is_frozen else "unfrozen"
        return f"{type(self).__name__}({state}, signatures={len(self._signatures)})"


class TransactionResponse:
    """Handle returned by execute(); resolves to the receipt or the record."""

    __slots__ = ("transaction_id", "transaction_hash")

    def __init__(self, transaction_id: TransactionId, transaction_hash: str):
        self.transaction_id = transaction_id
        self.transaction_hash = transaction_hash

    async def get_receipt(self, ctx: Context, validate: bool = True) -> Receipt:
        """
        Fetch the receipt.

        Args:
            ctx: Context whose network holds the transaction
            validate: Raise on a non-SUCCESS status (default True)

        Raises:
            NetworkRejectionError: If validate is set and the status is not SUCCESS
        """
        receipt = await ctx.network.get_receipt(self.transaction_id)
        if validate and receipt.status is not Status.SUCCESS:
            raise NetworkRejectionError(receipt.status, self.transaction_id)
        return receipt

    async def get_record(self, ctx: Context, validate: bool = True) -> TransactionRecord:
        record = await ctx.network.get_record(self.transaction_id)
        if validate and record.receipt.status is not Status.SUCCESS:
            raise NetworkRejectionError(record.receipt.status, self.transaction_id)
        return record

    def __repr__(self) -> str:
        return f"TransactionResponse({self.transaction_id})"


# ============================================================================
# TOKEN SERVICE
# ============================================================================

class TokenCreateTransaction(Transaction):
    """
    Create a fungible token.

    Without a supply key the token supply is fixed at the initial supply.
    The initial supply is credited to the treasury account.
    """

    transaction_type = TX_TOKEN_CREATE

    def __init__(self):
        super().__init__()
        self.token_name: str = ""
        self.token_symbol: str = ""
        self.decimals: int = 0
        self.initial_supply: int = 0
        self.treasury_account_id: Optional[AccountId] = None
        self.admin_key: Optional[Key] = None
        self.supply_key: Optional[Key] = None

    def set_token_name(self, name: str) -> 'TokenCreateTransaction':
        self._require_not_frozen()
        self.token_name = name
        return self

    def set_token_symbol(self, symbol: str) -> 'TokenCreateTransaction':
        self._require_not_frozen()
        self.token_symbol = symbol
        return self

    def set_decimals(self, decimals: int) -> 'TokenCreateTransaction':
        self._require_not_frozen()
        self.decimals = decimals
        return self

    def set_initial_supply(self, initial_supply: int) -> 'TokenCreateTransaction':
        self._require_not_frozen()
        self.initial_supply = initial_supply
        return self

    def set_treasury_account_id(self, account_id: Union[AccountId, str]) -> 'TokenCreateTransaction':
        self._require_not_frozen()
        self.treasury_account_id = AccountId.coerce(account_id)
        return self

    def set_admin_key(self, key: Key) -> 'TokenCreateTransaction':
        self._require_not_frozen()
        self.admin_key = key
        return self

    def set_supply_key(self, key: Key) -> 'TokenCreateTransaction':
        self._require_not_frozen()
        self.supply_key = key
        return self

    def _body_fields(self) -> Dict[str, Any]:
        return {
            "name": self.token_name,
            "symbol": self.token_symbol,
            "decimals": self.decimals,
            "initial_supply": self.initial_supply,
            "treasury": self.treasury_account_id,
            "admin_key": self.admin_key,
            "supply_key": self.supply_key,
        }


class TokenMintTransaction(Transaction):
    """Mint new base units into the token's treasury. Requires the supply key's signature."""

    transaction_type = TX_TOKEN_MINT

    def __init__(self):
        super().__init__()
        self.token_id: Optional[TokenId] = None
        self.amount: int = 0

    def set_token_id(self, token_id: Union[TokenId, str]) -> 'TokenMintTransaction':
        self._require_not_frozen()
        self.token_id = TokenId.coerce(token_id)
        return self

    def set_amount(self, amount: int) -> 'TokenMintTransaction':
        self._require_not_frozen()
        self.amount = amount
        return self

    def _body_fields(self) -> Dict[str, Any]:
        return {"token_id": self.token_id, "amount": self.amount}


class TokenAssociateTransaction(Transaction):
    """Associate an account with tokens. Requires the account's signature."""

    transaction_type = TX_TOKEN_ASSOCIATE

    def __init__(self):
        super().__init__()
        self.account_id: Optional[AccountId] = None
        self.token_ids: List[TokenId] = []

    def set_account_id(self, account_id: Union[AccountId, str]) -> 'TokenAssociateTransaction':
        self._require_not_frozen()
        self.account_id = AccountId.coerce(account_id)
        return self

    def set_token_ids(self, token_ids: Iterable[Union[TokenId, str]]) -> 'TokenAssociateTransaction':
        self._require_not_frozen()
        self.token_ids = [TokenId.coerce(t) for t in token_ids]
        return self

    def _body_fields(self) -> Dict[str, Any]:
        return {"account_id": self.account_id, "token_ids": list(self.token_ids)}


class TransferTransaction(Transaction):
    """
    Atomic hbar and token transfers.

    Each entry is a signed delta: negative debits, positive credits. Repeated
    entries for the same account and token are merged. Every debited account
    must sign; per token (and for hbars) the deltas must sum to zero.
    """

    transaction_type = TX_CRYPTO_TRANSFER

    def __init__(self):
        super().__init__()
        self._hbar_transfers: Dict[AccountId, int] = {}
        self._token_transfers: Dict[TokenId, Dict[AccountId, int]] = {}

    def add_token_transfer(
        self,
        token_id: Union[TokenId, str],
        account_id: Union[AccountId, str],
        amount: int,
    ) -> 'TransferTransaction':
        """
        Add a token delta in base units.

        Raises:
            ValueError: If amount is not an integer
            TransactionFrozenError: If the transaction is frozen
        """
        self._require_not_frozen()
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise ValueError(f"Token transfer amount must be an integer, got {amount!r}")
        token_id = TokenId.coerce(token_id)
        account_id = AccountId.coerce(account_id)
        per_account = self._token_transfers.setdefault(token_id, {})
        per_account[account_id] = per_account.get(account_id, 0) + amount
        return self

    def add_hbar_transfer(
        self,
        account_id: Union[AccountId, str],
        amount: Union[Hbar, int, str],
    ) -> 'TransferTransaction':
        """Add an hbar delta. Plain numbers are whole hbars."""
        self._require_not_frozen()
        account_id = AccountId.coerce(account_id)
        tinybars = Hbar.coerce(amount).to_tinybars()
        self._hbar_transfers[account_id] = self._hbar_transfers.get(account_id, 0) + tinybars
        return self

    @property
    def hbar_transfers(self) -> Mapping[AccountId, Hbar]:
        return {acc: Hbar(v) for acc, v in self._hbar_transfers.items()}

    @property
    def token_transfers(self) -> Mapping[TokenId, Mapping[AccountId, int]]:
        return {tok: dict(amounts) for tok, amounts in self._token_transfers.items()}

    def _body_fields(self) -> Dict[str, Any]:
        return {
            "hbar_transfers": dict(self._hbar_transfers),
            "token_transfers": self.token_transfers,
        }


# ============================================================================
# CONSENSUS SERVICE
# ============================================================================

class TopicCreateTransaction(Transaction):
    """Create a topic. With a submit key, only satisfying signers may publish."""

    transaction_type = TX_TOPIC_CREATE

    def __init__(self):
        super().__init__()
        self.topic_memo: str = ""
        self.submit_key: Optional[Key] = None
        self.admin_key: Optional[Key] = None

    def set_topic_memo(self, memo: str) -> 'TopicCreateTransaction':
        self._require_not_frozen()
        self.topic_memo = memo
        return self

    def set_submit_key(self, key: Key) -> 'TopicCreateTransaction':
        self._require_not_frozen()
        self.submit_key = key
        return self

    def set_admin_key(self, key: Key) -> 'TopicCreateTransaction':
        self._require_not_frozen()
        self.admin_key = key
        return self

    def _body_fields(self) -> Dict[str, Any]:
        return {
            "topic_memo": self.topic_memo,
            "submit_key": self.submit_key,
            "admin_key": self.admin_key,
        }


class TopicMessageSubmitTransaction(Transaction):
    """
    Publish a message, or one chunk of a longer message, to a topic.

    A single submission carries at most MESSAGE_SIZE_LIMIT bytes. Longer
    messages are split by topic.submit_message into chunk submissions that
    each carry a ChunkInfo.
    """

    transaction_type = TX_TOPIC_SUBMIT_MESSAGE

    def __init__(self):
        super().__init__()
        self.topic_id: Optional[TopicId] = None
        self.message: bytes = b""
        self.chunk_info: Optional[ChunkInfo] = None

    def set_topic_id(self, topic_id: Union[TopicId, str]) -> 'TopicMessageSubmitTransaction':
        self._require_not_frozen()
        self.topic_id = TopicId.coerce(topic_id)
        return self

    def set_message(self, message: Union[str, bytes]) -> 'TopicMessageSubmitTransaction':
        self._require_not_frozen()
        self.message = message.encode("utf-8") if isinstance(message, str) else bytes(message)
        return self

    def set_chunk_info(
        self, initial_transaction_id: TransactionId, number: int, total: int
    ) -> 'TopicMessageSubmitTransaction':
        """Mark this submission as chunk `number` of `total` of the message started by initial_transaction_id."""
        self._require_not_frozen()
        self.chunk_info = ChunkInfo(initial_transaction_id, number, total)
        return self

    def _body_fields(self) -> Dict[str, Any]:
        chunk = None
        if self.chunk_info is not None:
            chunk = [self.chunk_info.initial_transaction_id, self.chunk_info.number, self.chunk_info.total]
        return {"topic_id": self.topic_id, "message": self.message, "chunk_info": chunk}
