"""
Core types and pure functions for the token harness.

This module provides the foundational data structures and protocols shared by
the SDK surface, the builders and the sandbox ledger:
1. Constants: tinybar scale, transaction types, fee schedule, size limits
2. Identifiers: AccountId, TokenId, TopicId, TransactionId
3. Values: Hbar (native currency held as integer tinybars)
4. Status codes and the HarnessError exception family
5. Immutable results: Receipt, TransactionRecord, AccountBalance, AccountInfo,
   TokenInfo, TopicInfo, TopicMessage
6. Protocols: Network (what a ledger backend must answer) and MessageStream
7. Canonical serialization used to produce the signed transaction body

Everything here is immutable or pure. Nothing in this module performs I/O.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import (
    Dict, List, Optional, Any, Protocol, Tuple, Mapping, Union,
    AsyncIterator, TYPE_CHECKING, runtime_checkable,
)

if TYPE_CHECKING:
    from .keys import PublicKey, KeyList


# ============================================================================
# CONSTANTS
# ============================================================================

# 1 hbar = 10^8 tinybars. Balances are always held as integer tinybars.
TINYBARS_PER_HBAR = 100_000_000

# Total native supply created at genesis and held by the genesis account.
# Every later hbar balance is a transfer out of this supply.
HBAR_TOTAL_SUPPLY_TINYBARS = 50_000_000_000 * TINYBARS_PER_HBAR

# Transaction type constants; also the keys of the fee schedule
TX_CRYPTO_TRANSFER = "CRYPTO_TRANSFER"
TX_TOKEN_CREATE = "TOKEN_CREATE"
TX_TOKEN_MINT = "TOKEN_MINT"
TX_TOKEN_ASSOCIATE = "TOKEN_ASSOCIATE"
TX_TOPIC_CREATE = "TOPIC_CREATE"
TX_TOPIC_SUBMIT_MESSAGE = "TOPIC_SUBMIT_MESSAGE"

# Flat network fee per transaction type, in tinybars.
DEFAULT_FEE_SCHEDULE: Mapping[str, int] = {
    TX_CRYPTO_TRANSFER: 100_000,          # 0.001 hbar
    TX_TOKEN_CREATE: 100_000_000,         # 1 hbar
    TX_TOKEN_MINT: 1_000_000,             # 0.01 hbar
    TX_TOKEN_ASSOCIATE: 5_000_000,        # 0.05 hbar
    TX_TOPIC_CREATE: 1_000_000,           # 0.01 hbar
    TX_TOPIC_SUBMIT_MESSAGE: 10_000,      # 0.0001 hbar
}

# Maximum topic message payload per submission, in bytes.
MESSAGE_SIZE_LIMIT = 1024

# Maximum number of chunks a single logical topic message may be split into.
MAX_CHUNKS = 20

# Maximum topic memo length, in bytes.
MEMO_SIZE_LIMIT = 100

# Default logical genesis time of a sandbox network.
DEFAULT_GENESIS_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ============================================================================
# STATUS CODES
# ============================================================================

class Status(Enum):
    """
    Outcome of a submitted transaction, as reported by receipts.

    SUCCESS is the only non-failure status. Every other member names the rule
    the network enforced when it rejected the transaction (or its precheck).
    """
    SUCCESS = "SUCCESS"
    # Precheck
    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"
    INSUFFICIENT_PAYER_BALANCE = "INSUFFICIENT_PAYER_BALANCE"
    PAYER_ACCOUNT_NOT_FOUND = "PAYER_ACCOUNT_NOT_FOUND"
    RECEIPT_NOT_FOUND = "RECEIPT_NOT_FOUND"
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"
    # Signatures
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    # Accounts and transfers
    INVALID_ACCOUNT_ID = "INVALID_ACCOUNT_ID"
    INVALID_ACCOUNT_AMOUNTS = "INVALID_ACCOUNT_AMOUNTS"
    INSUFFICIENT_ACCOUNT_BALANCE = "INSUFFICIENT_ACCOUNT_BALANCE"
    # Tokens
    INVALID_TOKEN_ID = "INVALID_TOKEN_ID"
    INVALID_TREASURY_ACCOUNT_FOR_TOKEN = "INVALID_TREASURY_ACCOUNT_FOR_TOKEN"
    MISSING_TOKEN_NAME = "MISSING_TOKEN_NAME"
    MISSING_TOKEN_SYMBOL = "MISSING_TOKEN_SYMBOL"
    INVALID_TOKEN_DECIMALS = "INVALID_TOKEN_DECIMALS"
    INVALID_TOKEN_INITIAL_SUPPLY = "INVALID_TOKEN_INITIAL_SUPPLY"
    INVALID_TOKEN_MINT_AMOUNT = "INVALID_TOKEN_MINT_AMOUNT"
    TOKEN_HAS_NO_SUPPLY_KEY = "TOKEN_HAS_NO_SUPPLY_KEY"
    TOKEN_NOT_ASSOCIATED_TO_ACCOUNT = "TOKEN_NOT_ASSOCIATED_TO_ACCOUNT"
    TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT = "TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT"
    INSUFFICIENT_TOKEN_BALANCE = "INSUFFICIENT_TOKEN_BALANCE"
    TRANSFERS_NOT_ZERO_SUM_FOR_TOKEN = "TRANSFERS_NOT_ZERO_SUM_FOR_TOKEN"
    EMPTY_TOKEN_TRANSFER_ACCOUNT_AMOUNTS = "EMPTY_TOKEN_TRANSFER_ACCOUNT_AMOUNTS"
    # Topics
    INVALID_TOPIC_ID = "INVALID_TOPIC_ID"
    INVALID_TOPIC_MESSAGE = "INVALID_TOPIC_MESSAGE"
    MESSAGE_SIZE_TOO_LARGE = "MESSAGE_SIZE_TOO_LARGE"
    MEMO_TOO_LONG = "MEMO_TOO_LONG"
    INVALID_CHUNK_NUMBER = "INVALID_CHUNK_NUMBER"
    INVALID_CHUNK_TRANSACTION_ID = "INVALID_CHUNK_TRANSACTION_ID"

    def __str__(self) -> str:
        return self.value


# ============================================================================
# EXCEPTIONS
# ============================================================================

class HarnessError(Exception):
    """Base exception for all harness-related errors."""
    pass


class NoOperatorError(HarnessError):
    """Raised when a context has no operator identity bound to it."""
    pass


class MalformedTransferError(HarnessError):
    """Raised when multi-party transfer inputs are mismatched or have fewer than two parties."""
    pass


class TransactionFrozenError(HarnessError):
    """Raised when a frozen transaction is modified or frozen again."""
    pass


class TransactionNotFrozenError(HarnessError):
    """Raised when a transaction is signed or submitted before it was frozen."""
    pass


class ConfigurationError(HarnessError):
    """Raised when static configuration or environment variables are missing or invalid."""
    pass


class NetworkRejectionError(HarnessError):
    """
    Raised when the network rejects a transaction or query.

    Raised from Transaction.execute() for precheck failures and from
    TransactionResponse.get_receipt()/get_record() when the receipt status is
    not SUCCESS. The message always contains the status name.

    Attributes:
        status: The Status the network reported
        transaction_id: The rejected transaction's id (None for queries)
    """

    def __init__(self, status: Status, transaction_id: Optional['TransactionId'] = None, detail: str = ""):
        self.status = status
        self.transaction_id = transaction_id
        self.detail = detail
        message = f"{status.value}"
        if transaction_id is not None:
            message = f"transaction {transaction_id} failed: {status.value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class AssociationMissingError(HarnessError, AssertionError):
    """
    Raised when a token balance is read for an account not associated with the token.

    Subclasses AssertionError so test callers see a plain assertion failure.
    """
    pass


# ============================================================================
# IDENTIFIERS
# ============================================================================

@dataclass(frozen=True, slots=True, order=True)
class EntityId:
    """
    Ledger-native entity address in ``shard.realm.num`` form.

    Subclasses share the layout but never compare equal to one another,
    so an AccountId and a TokenId with the same numbers are distinct.
    """
    shard: int
    realm: int
    num: int

    def __post_init__(self):
        for part in (self.shard, self.realm, self.num):
            if not isinstance(part, int) or isinstance(part, bool):
                raise ValueError(f"{type(self).__name__} parts must be integers, got {part!r}")
            if part < 0:
                raise ValueError(f"{type(self).__name__} parts must be non-negative, got {part}")

    @classmethod
    def from_string(cls, text: str):
        """
        Parse an id of the form ``0.0.1234``.

        Raises:
            ValueError: If the text is not three dot-separated non-negative integers
        """
        parts = text.strip().split(".")
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            raise ValueError(f"Invalid {cls.__name__} string: {text!r}")
        return cls(int(parts[0]), int(parts[1]), int(parts[2]))

    @classmethod
    def coerce(cls, value: Union['EntityId', str]):
        """Return value as an instance of cls, parsing strings."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls.from_string(value)
        raise TypeError(f"Cannot convert {type(value).__name__} to {cls.__name__}")

    def __str__(self) -> str:
        return f"{self.shard}.{self.realm}.{self.num}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self})"


class AccountId(EntityId):
    """Identifier of an account."""
    __slots__ = ()


class TokenId(EntityId):
    """Identifier of a fungible token."""
    __slots__ = ()


class TopicId(EntityId):
    """Identifier of a consensus topic."""
    __slots__ = ()


# Well-known accounts of every sandbox network.
GENESIS_ACCOUNT_ID = AccountId(0, 0, 2)
NODE_ACCOUNT_ID = AccountId(0, 0, 3)


@dataclass(frozen=True, slots=True, order=True)
class TransactionId:
    """
    Unique transaction identifier: the paying account plus a valid-start instant.

    The payer is charged the network fee. The valid start is expressed in
    whole seconds and nanoseconds since the Unix epoch.
    """
    account_id: AccountId
    valid_start_seconds: int
    valid_start_nanos: int = 0

    @classmethod
    def generate(cls, account_id: AccountId, at: datetime, offset_nanos: int = 0) -> 'TransactionId':
        """Build a transaction id for account_id starting at the given instant plus offset_nanos."""
        total = _nanos_since_epoch(at) + offset_nanos
        return cls(account_id, total // 1_000_000_000, total % 1_000_000_000)

    def __str__(self) -> str:
        return f"{self.account_id}@{self.valid_start_seconds}.{self.valid_start_nanos:09d}"


def _nanos_since_epoch(at: datetime) -> int:
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    delta = at - _EPOCH
    return (delta // timedelta(microseconds=1)) * 1000


# ============================================================================
# NATIVE CURRENCY
# ============================================================================

@dataclass(frozen=True, slots=True, order=True)
class Hbar:
    """
    A native-currency amount, stored as integer tinybars.

    Negative amounts are allowed (they describe debits in transfer lists).
    """
    tinybars: int

    def __post_init__(self):
        if not isinstance(self.tinybars, int) or isinstance(self.tinybars, bool):
            raise ValueError(f"Hbar tinybars must be an integer, got {self.tinybars!r}")

    @classmethod
    def from_tinybars(cls, tinybars: int) -> 'Hbar':
        return cls(int(tinybars))

    @classmethod
    def from_hbar(cls, amount: Union[int, str, Decimal]) -> 'Hbar':
        """
        Convert a whole or fractional hbar amount to tinybars.

        Floats are rejected to avoid binary rounding; pass a str or Decimal.

        Raises:
            ValueError: If the amount has more than 8 decimal places or is not finite
        """
        if isinstance(amount, float):
            raise ValueError("Hbar amounts must be int, str or Decimal, not float")
        value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
        if not value.is_finite():
            raise ValueError(f"Hbar amount must be finite, got {amount}")
        scaled = value * TINYBARS_PER_HBAR
        if scaled != scaled.to_integral_value(rounding=ROUND_DOWN):
            raise ValueError(f"Hbar amount {amount} is finer than one tinybar")
        return cls(int(scaled))

    @classmethod
    def coerce(cls, value: Union['Hbar', int, str, Decimal]) -> 'Hbar':
        """Return value as Hbar, reading plain numbers as whole hbars."""
        if isinstance(value, Hbar):
            return value
        return cls.from_hbar(value)

    def to_tinybars(self) -> int:
        return self.tinybars

    def to_hbar(self) -> Decimal:
        return Decimal(self.tinybars) / TINYBARS_PER_HBAR

    def negated(self) -> 'Hbar':
        return Hbar(-self.tinybars)

    def is_negative(self) -> bool:
        return self.tinybars < 0

    def __add__(self, other: 'Hbar') -> 'Hbar':
        return Hbar(self.tinybars + other.tinybars)

    def __sub__(self, other: 'Hbar') -> 'Hbar':
        return Hbar(self.tinybars - other.tinybars)

    def __str__(self) -> str:
        return f"{_normalize_decimal(self.to_hbar())} ℏ"

    def __repr__(self) -> str:
        return f"Hbar({self.tinybars} tinybars)"


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Transfer:
    """One native-currency movement in a record: negative for debits."""
    account_id: AccountId
    amount: Hbar


@dataclass(frozen=True, slots=True)
class Receipt:
    """
    Terminal status of a submitted transaction.

    Attributes:
        status: SUCCESS or the rejection status
        transaction_id: Transaction this receipt belongs to
        token_id: Token created by a TOKEN_CREATE
        topic_id: Topic created by a TOPIC_CREATE
        total_supply: Token supply after a successful TOKEN_MINT
        topic_sequence_number: Sequence number assigned to a submitted message
        topic_running_hash: Topic running hash after a submitted message
    """
    status: Status
    transaction_id: TransactionId
    token_id: Optional[TokenId] = None
    topic_id: Optional[TopicId] = None
    total_supply: Optional[int] = None
    topic_sequence_number: Optional[int] = None
    topic_running_hash: Optional[bytes] = None


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """
    Detailed post-execution report of a transaction.

    ``transfers`` lists every native-currency movement, the fee included,
    netted per account. ``token_transfers`` maps token -> account -> delta.
    """
    receipt: Receipt
    transaction_id: TransactionId
    transaction_type: str
    transaction_hash: str
    consensus_timestamp: datetime
    transaction_fee: Hbar
    transfers: Tuple[Transfer, ...]
    token_transfers: Mapping[TokenId, Mapping[AccountId, int]] = field(default_factory=dict)
    memo: str = ""


@dataclass(frozen=True, slots=True)
class AccountBalance:
    """
    Native and token balances of an account.

    ``tokens`` only holds entries for associated tokens; an absent entry means
    the account has no relationship with that token.
    """
    account_id: AccountId
    hbars: Hbar
    tokens: Mapping[TokenId, int]


@dataclass(frozen=True, slots=True)
class TokenRelationship:
    """An account's relationship with one token."""
    token_id: TokenId
    symbol: str
    balance: int
    decimals: int


@dataclass(frozen=True, slots=True)
class AccountInfo:
    account_id: AccountId
    key: 'PublicKey'
    balance: Hbar
    token_relationships: Mapping[TokenId, TokenRelationship]


@dataclass(frozen=True, slots=True)
class TokenInfo:
    """
    State of a fungible token.

    A token without a supply key has a fixed supply: mints are rejected.
    """
    token_id: TokenId
    name: str
    symbol: str
    decimals: int
    total_supply: int
    treasury_account_id: AccountId
    admin_key: Optional[Union['PublicKey', 'KeyList']] = None
    supply_key: Optional[Union['PublicKey', 'KeyList']] = None


@dataclass(frozen=True, slots=True)
class TopicInfo:
    """State of a consensus topic. ``sequence_number`` counts accepted messages."""
    topic_id: TopicId
    memo: str
    submit_key: Optional[Union['PublicKey', 'KeyList']]
    admin_key: Optional[Union['PublicKey', 'KeyList']]
    sequence_number: int
    running_hash: bytes


@dataclass(frozen=True, slots=True)
class ChunkInfo:
    """
    Position of one chunk within a message split across submissions.

    All chunks of a message share the transaction id of the first chunk.
    ``number`` is 1-based and at most ``total``.
    """
    initial_transaction_id: TransactionId
    number: int
    total: int


@dataclass(frozen=True, slots=True)
class TopicMessage:
    """
    A message delivered from a topic, in consensus order.

    A message reassembled from several chunks carries the sequence number,
    timestamp and running hash of its last chunk, and the chunks themselves
    in ``chunks``.
    """
    topic_id: TopicId
    contents: bytes
    sequence_number: int
    consensus_timestamp: datetime
    running_hash: bytes
    chunk_info: Optional[ChunkInfo] = None
    chunks: Tuple['TopicMessage', ...] = ()

    def text(self, encoding: str = "utf-8") -> str:
        return self.contents.decode(encoding)


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class MessageStream(Protocol):
    """Cancellable async iterator of topic messages in consensus order."""

    def __aiter__(self) -> AsyncIterator[TopicMessage]:
        ...

    async def __anext__(self) -> TopicMessage:
        ...

    def cancel(self) -> None:
        ...


@runtime_checkable
class Network(Protocol):
    """
    Interface a ledger backend exposes to contexts, transactions and queries.

    Every coroutine is a suspension point. Implementations raise
    NetworkRejectionError for precheck failures and unknown entities.
    LocalNetwork implements this protocol in-process.
    """

    @property
    def current_time(self) -> datetime:
        ...

    @property
    def node_account_id(self) -> AccountId:
        ...

    def new_transaction_id(self, account_id: AccountId) -> TransactionId:
        """Return a fresh, never-used transaction id paid by account_id."""
        ...

    async def submit(self, transaction: Any) -> TransactionId:
        """Precheck and apply a frozen, signed transaction."""
        ...

    async def get_receipt(self, transaction_id: TransactionId) -> Receipt:
        ...

    async def get_record(self, transaction_id: TransactionId) -> TransactionRecord:
        ...

    async def account_balance(self, account_id: AccountId) -> AccountBalance:
        ...

    async def account_info(self, account_id: AccountId) -> AccountInfo:
        ...

    async def token_info(self, token_id: TokenId) -> TokenInfo:
        ...

    async def topic_info(self, topic_id: TopicId) -> TopicInfo:
        ...

    def open_topic_stream(self, topic_id: TopicId, start_time: Optional[datetime] = None) -> MessageStream:
        """Open a stream replaying messages since start_time, then following live ones."""
        ...


# ============================================================================
# CANONICAL SERIALIZATION
# ============================================================================

def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string representation.

    Decimal("1.0") and Decimal("1.00") both become "1"; no scientific notation.
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value.

    Deterministic regardless of dict insertion order or Decimal representation.
    Strings and bytes carry their length, so separators inside a value
    cannot make two different structures serialize alike.
    Transaction bodies are signed over the UTF-8 bytes of this string, so two
    transactions with the same content always sign the same bytes.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S{len(value)}:{value}"
    if isinstance(value, bytes):
        return f"B{len(value)}:{value.hex()}"
    if isinstance(value, EntityId):
        return f"E:{type(value).__name__}:{value}"
    if isinstance(value, TransactionId):
        return f"X:{value}"
    if isinstance(value, Hbar):
        return f"H:{value.tinybars}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: canonicalize(kv[0]))
        serialized = ",".join(f"{canonicalize(k)}:{canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(sorted(canonicalize(item) for item in value))
        return f"<{serialized}>"
    # Keys and key lists have deterministic reprs
    return f"R:{repr(value)}"


def net_amounts(entries: List[Tuple[Any, int]]) -> Dict[Any, int]:
    """
    Sum signed amounts per key, keeping first-seen key order.

    Used to fold repeated transfer entries for the same account.
    """
    totals: Dict[Any, int] = {}
    for key, amount in entries:
        totals[key] = totals.get(key, 0) + amount
    return totals
