"""
network.py - In-Process Sandbox Ledger

LocalNetwork is a single-node ledger that serves the SDK surface without a
live network. It is the only module that mutates ledger state.

Key responsibilities:
    - Implements the Network protocol used by contexts, transactions and queries
    - Prechecks every submission (duplicate id, payer, signatures, fee)
    - Charges the flat network fee to the payer, even when the body is rejected
    - Validates the body fully, then applies all of its effects or none of them
    - Stores a receipt and a record for every transaction that passed precheck
    - Keeps topic message logs and fans new messages out to open streams

Ordering is submission order. Every accepted submission advances the
consensus clock by one microsecond.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Any, Union, AbstractSet
import asyncio
import hashlib

from .core import (
    # Types
    AccountId, TokenId, TopicId, TransactionId, Hbar, Status,
    Receipt, Transfer, TransactionRecord, AccountBalance, AccountInfo,
    TokenRelationship, TokenInfo, TopicInfo, TopicMessage, ChunkInfo,
    # Constants
    DEFAULT_FEE_SCHEDULE, DEFAULT_GENESIS_TIME, GENESIS_ACCOUNT_ID, NODE_ACCOUNT_ID,
    HBAR_TOTAL_SUPPLY_TINYBARS, MESSAGE_SIZE_LIMIT, MAX_CHUNKS, MEMO_SIZE_LIMIT,
    TX_CRYPTO_TRANSFER, TX_TOKEN_CREATE, TX_TOKEN_MINT, TX_TOKEN_ASSOCIATE,
    TX_TOPIC_CREATE, TX_TOPIC_SUBMIT_MESSAGE,
    # Exceptions
    HarnessError, NetworkRejectionError, TransactionNotFrozenError,
    # Helpers
    net_amounts,
)
from .keys import Key, PrivateKey, PublicKey


FIRST_ENTITY_NUM = 1001
EMPTY_RUNNING_HASH = bytes(48)

_CLOSED = object()


# ============================================================================
# TOPIC MESSAGE STREAM
# ============================================================================

class TopicMessageStream:
    """
    Async iterator over one topic's messages.

    Replays the backlog first, then yields live messages as the network
    pushes them. cancel() ends iteration; it is idempotent.
    """

    def __init__(
        self,
        topic_id: TopicId,
        backlog: Iterable[TopicMessage] = (),
        on_close: Optional[Callable[['TopicMessageStream'], None]] = None,
        error: Optional[Exception] = None,
    ):
        self.topic_id = topic_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self._error = error
        self._closed = False
        for message in backlog:
            self._queue.put_nowait(message)

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, message: TopicMessage) -> None:
        if not self._closed:
            self._queue.put_nowait(message)

    def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        if self._on_close is not None:
            self._on_close(self)

    def __aiter__(self) -> 'TopicMessageStream':
        return self

    async def __anext__(self) -> TopicMessage:
        if self._error is not None:
            error, self._error = self._error, None
            self.cancel()
            raise error
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        return item


# ============================================================================
# LOCAL NETWORK
# ============================================================================

class LocalNetwork:
    """
    Deterministic single-node ledger implementing the Network protocol.

    Design Principles:
        - Always validates: every transaction is prechecked and its body fully
          validated before any effect is applied.
        - Always records: every transaction that passed precheck gets a receipt
          and a record, and is appended to transaction_log.
        - Conserves: hbars only move between accounts (fees go to the node
          account); token balances always sum to the token's total supply.

    Thread Safety:
        Not thread-safe. Use from a single event loop.

    Example:
        network = LocalNetwork("sandbox", verbose=False)
        alice_key = PrivateKey.generate()
        alice = network.register_account(alice_key, initial_balance=100)
        ctx = Context(network).with_operator(alice, alice_key)
    """

    def __init__(
        self,
        name: str = "sandbox",
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        fee_schedule: Optional[Mapping[str, int]] = None,
    ):
        """
        Create a sandbox network.

        Args:
            name: Network identifier
            initial_time: Genesis consensus time (default: 2024-01-01 UTC)
            verbose: Print a line per transaction (default: True)
            fee_schedule: Fee in tinybars per transaction type (default: DEFAULT_FEE_SCHEDULE)
        """
        self.name = name
        self.verbose = verbose
        self.fee_schedule: Dict[str, int] = dict(DEFAULT_FEE_SCHEDULE)
        if fee_schedule:
            self.fee_schedule.update(fee_schedule)
        self._current_time: datetime = initial_time or DEFAULT_GENESIS_TIME

        self.keys: Dict[AccountId, Key] = {}
        self.hbar_balances: Dict[AccountId, int] = {}
        # Presence of a token entry means the account is associated with it
        self.token_balances: Dict[AccountId, Dict[TokenId, int]] = {}
        self.tokens: Dict[TokenId, TokenInfo] = {}
        self.topics: Dict[TopicId, TopicInfo] = {}
        self.topic_messages: Dict[TopicId, List[TopicMessage]] = {}
        self._streams: Dict[TopicId, List[TopicMessageStream]] = {}
        self.receipts: Dict[TransactionId, Receipt] = {}
        self.records: Dict[TransactionId, TransactionRecord] = {}
        self.transaction_log: List[TransactionRecord] = []
        self._next_entity_num = FIRST_ENTITY_NUM
        self._tx_nonce = 0

        # Genesis holds the entire hbar supply; the node account collects fees
        self.genesis_key = PrivateKey.generate()
        self._create_account_entry(GENESIS_ACCOUNT_ID, self.genesis_key.public_key, HBAR_TOTAL_SUPPLY_TINYBARS)
        self._create_account_entry(NODE_ACCOUNT_ID, PrivateKey.generate().public_key, 0)

    # ========================================================================
    # NETWORK PROTOCOL: identity and time
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Consensus time of the last accepted transaction (or genesis)."""
        return self._current_time

    @property
    def node_account_id(self) -> AccountId:
        return NODE_ACCOUNT_ID

    @property
    def genesis_account_id(self) -> AccountId:
        return GENESIS_ACCOUNT_ID

    def advance_time(self, new_time: datetime) -> None:
        """
        Move the consensus clock forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    def new_transaction_id(self, account_id: AccountId) -> TransactionId:
        """Fresh transaction id; a per-network nonce keeps ids unique."""
        self._tx_nonce += 1
        return TransactionId.generate(account_id, self._current_time, self._tx_nonce)

    # ========================================================================
    # ACCOUNTS (Mutating, out-of-band)
    # ========================================================================

    def _allocate_num(self) -> int:
        num = self._next_entity_num
        self._next_entity_num += 1
        return num

    def _create_account_entry(self, account_id: AccountId, key: Key, tinybars: int) -> None:
        self.keys[account_id] = key
        self.hbar_balances[account_id] = tinybars
        self.token_balances[account_id] = {}

    def register_account(
        self,
        key: Union[Key, PrivateKey],
        initial_balance: Union[Hbar, int, str] = 0,
        account_id: Optional[Union[AccountId, str]] = None,
    ) -> AccountId:
        """
        Create an account funded from the genesis account.

        Args:
            key: Account key (a PrivateKey registers its public key)
            initial_balance: Starting hbars (plain numbers are whole hbars)
            account_id: Fixed id, for accounts loaded from configuration.
                Allocated from the entity counter when omitted.

        Returns:
            The new account's id

        Raises:
            ValueError: If the id is taken, the balance is negative or exceeds genesis funds
        """
        if isinstance(key, PrivateKey):
            key = key.public_key
        tinybars = Hbar.coerce(initial_balance).to_tinybars()
        if tinybars < 0:
            raise ValueError(f"initial_balance must be non-negative, got {initial_balance}")
        if tinybars > self.hbar_balances[GENESIS_ACCOUNT_ID]:
            raise ValueError("initial_balance exceeds the genesis account's funds")

        if account_id is None:
            account_id = AccountId(0, 0, self._allocate_num())
        else:
            account_id = AccountId.coerce(account_id)
            if account_id in self.keys:
                raise ValueError(f"Account {account_id} already exists")
            self._next_entity_num = max(self._next_entity_num, account_id.num + 1)

        self.hbar_balances[GENESIS_ACCOUNT_ID] -= tinybars
        self._create_account_entry(account_id, key, tinybars)
        if self.verbose:
            print(f"📝 Account: {account_id} funded with {Hbar(tinybars)}")
        return account_id

    def account_exists(self, account_id: AccountId) -> bool:
        return account_id in self.keys

    # ========================================================================
    # SUBMISSION
    # ========================================================================

    async def submit(self, transaction: Any) -> TransactionId:
        """
        Precheck, charge, validate and apply a frozen, signed transaction.

        Args:
            transaction: A frozen Transaction

        Returns:
            The transaction id, for receipt and record lookups

        Raises:
            TransactionNotFrozenError: If the transaction has no id
            NetworkRejectionError: On a precheck failure. Nothing is charged.
        """
        await asyncio.sleep(0)
        return self._process(transaction)

    def _process(self, tx: Any) -> TransactionId:
        tx_id: Optional[TransactionId] = tx.transaction_id
        if tx_id is None:
            raise TransactionNotFrozenError(f"{type(tx).__name__} must be frozen before submission")
        if tx.transaction_type not in self.fee_schedule:
            raise HarnessError(f"Unsupported transaction type: {tx.transaction_type!r}")

        fee = self.fee_schedule[tx.transaction_type]
        signers = self._verified_signers(tx)
        status = self._precheck(tx, tx_id, fee, signers)
        if status is not Status.SUCCESS:
            if self.verbose:
                print(f"✗ PRECHECK {tx.transaction_type} {tx_id}: {status}")
            raise NetworkRejectionError(status, tx_id)

        payer = tx_id.account_id
        self.hbar_balances[payer] -= fee
        self.hbar_balances[NODE_ACCOUNT_ID] += fee
        self._current_time = self._current_time + timedelta(microseconds=1)
        consensus_time = self._current_time

        status = self._validate(tx, signers)
        receipt_fields: Dict[str, Any] = {}
        hbar_entries: List[Tuple[AccountId, int]] = [(payer, -fee), (NODE_ACCOUNT_ID, fee)]
        token_moves: Dict[TokenId, Dict[AccountId, int]] = {}
        if status is Status.SUCCESS:
            receipt_fields, token_moves = self._apply(tx, consensus_time)
            if tx.transaction_type == TX_CRYPTO_TRANSFER:
                hbar_entries.extend((acc, amt.to_tinybars()) for acc, amt in tx.hbar_transfers.items())

        receipt = Receipt(status=status, transaction_id=tx_id, **receipt_fields)
        transfers = tuple(
            Transfer(acc, Hbar(amount))
            for acc, amount in net_amounts(hbar_entries).items()
            if amount != 0
        )
        record = TransactionRecord(
            receipt=receipt,
            transaction_id=tx_id,
            transaction_type=tx.transaction_type,
            transaction_hash=tx.transaction_hash(),
            consensus_timestamp=consensus_time,
            transaction_fee=Hbar(fee),
            transfers=transfers,
            token_transfers=token_moves,
            memo=tx.memo,
        )
        self.receipts[tx_id] = receipt
        self.records[tx_id] = record
        self.transaction_log.append(record)

        if self.verbose:
            icon = "✓" if status is Status.SUCCESS else "✗"
            print(f"{icon} {tx.transaction_type} {tx_id}: {status} (fee {Hbar(fee)})")
        return tx_id

    def _verified_signers(self, tx: Any) -> Optional[Set[PublicKey]]:
        """Public keys whose signatures verify over the body; None if any signature is invalid."""
        body = tx.body_bytes()
        signers: Set[PublicKey] = set()
        for public_key, signature in tx.signatures.items():
            if not public_key.verify(signature, body):
                return None
            signers.add(public_key)
        return signers

    def _precheck(
        self, tx: Any, tx_id: TransactionId, fee: int, signers: Optional[Set[PublicKey]]
    ) -> Status:
        if tx_id in self.receipts:
            return Status.DUPLICATE_TRANSACTION
        payer = tx_id.account_id
        if payer not in self.keys:
            return Status.PAYER_ACCOUNT_NOT_FOUND
        if signers is None or not self.keys[payer].is_satisfied_by(signers):
            return Status.INVALID_SIGNATURE
        if self.hbar_balances[payer] < fee:
            return Status.INSUFFICIENT_PAYER_BALANCE
        return Status.SUCCESS

    # ========================================================================
    # VALIDATION (read-only)
    # ========================================================================

    def _validate(self, tx: Any, signers: AbstractSet[PublicKey]) -> Status:
        """
        Check a transaction body against current state.

        Runs after the fee was charged, so balance checks see post-fee balances.
        Order per type: entity existence and shape, then signatures, then state.
        """
        validators = {
            TX_CRYPTO_TRANSFER: self._validate_transfer,
            TX_TOKEN_CREATE: self._validate_token_create,
            TX_TOKEN_MINT: self._validate_token_mint,
            TX_TOKEN_ASSOCIATE: self._validate_token_associate,
            TX_TOPIC_CREATE: self._validate_topic_create,
            TX_TOPIC_SUBMIT_MESSAGE: self._validate_topic_submit,
        }
        return validators[tx.transaction_type](tx, signers)

    def _signed_by(self, key: Optional[Key], signers: AbstractSet[PublicKey]) -> bool:
        return key is None or key.is_satisfied_by(signers)

    def _validate_transfer(self, tx: Any, signers: AbstractSet[PublicKey]) -> Status:
        hbars = {acc: amt.to_tinybars() for acc, amt in tx.hbar_transfers.items()}
        tokens = tx.token_transfers
        if not hbars and not tokens:
            return Status.INVALID_ACCOUNT_AMOUNTS

        debited: Set[AccountId] = set()
        for account_id, amount in hbars.items():
            if account_id not in self.keys:
                return Status.INVALID_ACCOUNT_ID
            if amount < 0:
                debited.add(account_id)
        if sum(hbars.values()) != 0:
            return Status.INVALID_ACCOUNT_AMOUNTS

        for token_id, amounts in tokens.items():
            if token_id not in self.tokens:
                return Status.INVALID_TOKEN_ID
            if not amounts:
                return Status.EMPTY_TOKEN_TRANSFER_ACCOUNT_AMOUNTS
            for account_id, amount in amounts.items():
                if account_id not in self.keys:
                    return Status.INVALID_ACCOUNT_ID
                if amount < 0:
                    debited.add(account_id)
            if sum(amounts.values()) != 0:
                return Status.TRANSFERS_NOT_ZERO_SUM_FOR_TOKEN

        for account_id in debited:
            if not self.keys[account_id].is_satisfied_by(signers):
                return Status.INVALID_SIGNATURE

        for token_id, amounts in tokens.items():
            for account_id, amount in amounts.items():
                if amount == 0:
                    continue
                held = self.token_balances[account_id]
                if token_id not in held:
                    return Status.TOKEN_NOT_ASSOCIATED_TO_ACCOUNT
                if held[token_id] + amount < 0:
                    return Status.INSUFFICIENT_TOKEN_BALANCE

        for account_id, amount in hbars.items():
            if self.hbar_balances[account_id] + amount < 0:
                return Status.INSUFFICIENT_ACCOUNT_BALANCE
        return Status.SUCCESS

    def _validate_token_create(self, tx: Any, signers: AbstractSet[PublicKey]) -> Status:
        if not tx.token_name:
            return Status.MISSING_TOKEN_NAME
        if not tx.token_symbol:
            return Status.MISSING_TOKEN_SYMBOL
        if not isinstance(tx.decimals, int) or tx.decimals < 0:
            return Status.INVALID_TOKEN_DECIMALS
        if not isinstance(tx.initial_supply, int) or tx.initial_supply < 0:
            return Status.INVALID_TOKEN_INITIAL_SUPPLY
        if tx.treasury_account_id is None or tx.treasury_account_id not in self.keys:
            return Status.INVALID_TREASURY_ACCOUNT_FOR_TOKEN
        if not self._signed_by(self.keys[tx.treasury_account_id], signers):
            return Status.INVALID_SIGNATURE
        if not self._signed_by(tx.admin_key, signers):
            return Status.INVALID_SIGNATURE
        return Status.SUCCESS

    def _validate_token_mint(self, tx: Any, signers: AbstractSet[PublicKey]) -> Status:
        token = self.tokens.get(tx.token_id)
        if token is None:
            return Status.INVALID_TOKEN_ID
        if token.supply_key is None:
            return Status.TOKEN_HAS_NO_SUPPLY_KEY
        if not isinstance(tx.amount, int) or tx.amount <= 0:
            return Status.INVALID_TOKEN_MINT_AMOUNT
        if not self._signed_by(token.supply_key, signers):
            return Status.INVALID_SIGNATURE
        return Status.SUCCESS

    def _validate_token_associate(self, tx: Any, signers: AbstractSet[PublicKey]) -> Status:
        if tx.account_id is None or tx.account_id not in self.keys:
            return Status.INVALID_ACCOUNT_ID
        if not tx.token_ids:
            return Status.INVALID_TOKEN_ID
        for token_id in tx.token_ids:
            if token_id not in self.tokens:
                return Status.INVALID_TOKEN_ID
        if not self._signed_by(self.keys[tx.account_id], signers):
            return Status.INVALID_SIGNATURE
        held = self.token_balances[tx.account_id]
        seen: Set[TokenId] = set()
        for token_id in tx.token_ids:
            if token_id in held or token_id in seen:
                return Status.TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT
            seen.add(token_id)
        return Status.SUCCESS

    def _validate_topic_create(self, tx: Any, signers: AbstractSet[PublicKey]) -> Status:
        if len(tx.topic_memo.encode("utf-8")) > MEMO_SIZE_LIMIT:
            return Status.MEMO_TOO_LONG
        if not self._signed_by(tx.admin_key, signers):
            return Status.INVALID_SIGNATURE
        return Status.SUCCESS

    def _validate_topic_submit(self, tx: Any, signers: AbstractSet[PublicKey]) -> Status:
        topic = self.topics.get(tx.topic_id)
        if topic is None:
            return Status.INVALID_TOPIC_ID
        if not tx.message:
            return Status.INVALID_TOPIC_MESSAGE
        if len(tx.message) > MESSAGE_SIZE_LIMIT:
            return Status.MESSAGE_SIZE_TOO_LARGE
        chunk = tx.chunk_info
        if chunk is not None:
            if not 1 <= chunk.number <= chunk.total or chunk.total > MAX_CHUNKS:
                return Status.INVALID_CHUNK_NUMBER
            # The first chunk names itself as the initial transaction
            if chunk.number == 1 and chunk.initial_transaction_id != tx.transaction_id:
                return Status.INVALID_CHUNK_TRANSACTION_ID
        if not self._signed_by(topic.submit_key, signers):
            return Status.INVALID_SIGNATURE
        return Status.SUCCESS

    # ========================================================================
    # APPLICATION (Mutating, only after validation passed)
    # ========================================================================

    def _apply(
        self, tx: Any, consensus_time: datetime
    ) -> Tuple[Dict[str, Any], Dict[TokenId, Dict[AccountId, int]]]:
        """Apply a validated body. Returns (receipt fields, token movements for the record)."""
        kind = tx.transaction_type

        if kind == TX_CRYPTO_TRANSFER:
            for account_id, amount in tx.hbar_transfers.items():
                self.hbar_balances[account_id] += amount.to_tinybars()
            moves = {}
            for token_id, amounts in tx.token_transfers.items():
                for account_id, amount in amounts.items():
                    if amount != 0:
                        self.token_balances[account_id][token_id] += amount
                moves[token_id] = {acc: amt for acc, amt in amounts.items() if amt != 0}
            return {}, moves

        if kind == TX_TOKEN_CREATE:
            token_id = TokenId(0, 0, self._allocate_num())
            self.tokens[token_id] = TokenInfo(
                token_id=token_id,
                name=tx.token_name,
                symbol=tx.token_symbol,
                decimals=tx.decimals,
                total_supply=tx.initial_supply,
                treasury_account_id=tx.treasury_account_id,
                admin_key=tx.admin_key,
                supply_key=tx.supply_key,
            )
            self.token_balances[tx.treasury_account_id][token_id] = tx.initial_supply
            moves = {token_id: {tx.treasury_account_id: tx.initial_supply}} if tx.initial_supply else {}
            return {"token_id": token_id}, moves

        if kind == TX_TOKEN_MINT:
            token = self.tokens[tx.token_id]
            token = replace(token, total_supply=token.total_supply + tx.amount)
            self.tokens[tx.token_id] = token
            self.token_balances[token.treasury_account_id][tx.token_id] += tx.amount
            return (
                {"total_supply": token.total_supply},
                {tx.token_id: {token.treasury_account_id: tx.amount}},
            )

        if kind == TX_TOKEN_ASSOCIATE:
            for token_id in tx.token_ids:
                self.token_balances[tx.account_id][token_id] = 0
            return {}, {}

        if kind == TX_TOPIC_CREATE:
            topic_id = TopicId(0, 0, self._allocate_num())
            self.topics[topic_id] = TopicInfo(
                topic_id=topic_id,
                memo=tx.topic_memo,
                submit_key=tx.submit_key,
                admin_key=tx.admin_key,
                sequence_number=0,
                running_hash=EMPTY_RUNNING_HASH,
            )
            self.topic_messages[topic_id] = []
            return {"topic_id": topic_id}, {}

        if kind == TX_TOPIC_SUBMIT_MESSAGE:
            message = self._append_message(tx.topic_id, tx.message, consensus_time, tx.chunk_info)
            return (
                {
                    "topic_sequence_number": message.sequence_number,
                    "topic_running_hash": message.running_hash,
                },
                {},
            )

        raise HarnessError(f"Unsupported transaction type: {kind!r}")

    def _append_message(
        self,
        topic_id: TopicId,
        contents: bytes,
        consensus_time: datetime,
        chunk_info: Optional[ChunkInfo] = None,
    ) -> TopicMessage:
        topic = self.topics[topic_id]
        sequence_number = topic.sequence_number + 1
        running_hash = hashlib.sha384(
            topic.running_hash
            + str(topic_id).encode("ascii")
            + sequence_number.to_bytes(8, "big")
            + consensus_time.isoformat().encode("ascii")
            + hashlib.sha384(contents).digest()
        ).digest()
        self.topics[topic_id] = replace(topic, sequence_number=sequence_number, running_hash=running_hash)
        message = TopicMessage(
            topic_id=topic_id,
            contents=contents,
            sequence_number=sequence_number,
            consensus_timestamp=consensus_time,
            running_hash=running_hash,
            chunk_info=chunk_info,
        )
        self.topic_messages[topic_id].append(message)
        for stream in list(self._streams.get(topic_id, ())):
            stream.push(message)
        return message

    # ========================================================================
    # QUERIES (read-only)
    # ========================================================================

    async def get_receipt(self, transaction_id: TransactionId) -> Receipt:
        await asyncio.sleep(0)
        receipt = self.receipts.get(transaction_id)
        if receipt is None:
            raise NetworkRejectionError(Status.RECEIPT_NOT_FOUND, transaction_id)
        return receipt

    async def get_record(self, transaction_id: TransactionId) -> TransactionRecord:
        await asyncio.sleep(0)
        record = self.records.get(transaction_id)
        if record is None:
            raise NetworkRejectionError(Status.RECORD_NOT_FOUND, transaction_id)
        return record

    def _require_account(self, account_id: AccountId) -> None:
        if account_id not in self.keys:
            raise NetworkRejectionError(Status.INVALID_ACCOUNT_ID, detail=str(account_id))

    async def account_balance(self, account_id: AccountId) -> AccountBalance:
        await asyncio.sleep(0)
        self._require_account(account_id)
        return AccountBalance(
            account_id=account_id,
            hbars=Hbar(self.hbar_balances[account_id]),
            tokens=dict(self.token_balances[account_id]),
        )

    async def account_info(self, account_id: AccountId) -> AccountInfo:
        await asyncio.sleep(0)
        self._require_account(account_id)
        relationships = {
            token_id: TokenRelationship(
                token_id=token_id,
                symbol=self.tokens[token_id].symbol,
                balance=balance,
                decimals=self.tokens[token_id].decimals,
            )
            for token_id, balance in self.token_balances[account_id].items()
        }
        return AccountInfo(
            account_id=account_id,
            key=self.keys[account_id],
            balance=Hbar(self.hbar_balances[account_id]),
            token_relationships=relationships,
        )

    async def token_info(self, token_id: TokenId) -> TokenInfo:
        await asyncio.sleep(0)
        token = self.tokens.get(token_id)
        if token is None:
            raise NetworkRejectionError(Status.INVALID_TOKEN_ID, detail=str(token_id))
        return token

    async def topic_info(self, topic_id: TopicId) -> TopicInfo:
        await asyncio.sleep(0)
        topic = self.topics.get(topic_id)
        if topic is None:
            raise NetworkRejectionError(Status.INVALID_TOPIC_ID, detail=str(topic_id))
        return topic

    def open_topic_stream(self, topic_id: TopicId, start_time: Optional[datetime] = None) -> TopicMessageStream:
        """
        Open a stream replaying messages at or after start_time, then live ones.

        An unknown topic yields a stream that raises NetworkRejectionError
        (INVALID_TOPIC_ID) on first iteration.
        """
        if topic_id not in self.topics:
            return TopicMessageStream(
                topic_id,
                error=NetworkRejectionError(Status.INVALID_TOPIC_ID, detail=str(topic_id)),
            )
        backlog = [
            m for m in self.topic_messages[topic_id]
            if start_time is None or m.consensus_timestamp >= start_time
        ]
        stream = TopicMessageStream(topic_id, backlog, on_close=self._close_stream)
        self._streams.setdefault(topic_id, []).append(stream)
        return stream

    def _close_stream(self, stream: TopicMessageStream) -> None:
        streams = self._streams.get(stream.topic_id, [])
        if stream in streams:
            streams.remove(stream)

    def open_stream_count(self, topic_id: TopicId) -> int:
        return len(self._streams.get(topic_id, ()))

    def close(self) -> None:
        """Cancel every open topic stream."""
        for streams in list(self._streams.values()):
            for stream in list(streams):
                stream.cancel()

    # ========================================================================
    # INSPECTION (sync, for tests and tooling)
    # ========================================================================

    def get_hbar_balance(self, account_id: AccountId) -> Hbar:
        self._require_account(account_id)
        return Hbar(self.hbar_balances[account_id])

    def get_token_balance(self, account_id: AccountId, token_id: TokenId) -> Optional[int]:
        """Token balance, or None when the account is not associated with the token."""
        self._require_account(account_id)
        return self.token_balances[account_id].get(token_id)

    def is_associated(self, account_id: AccountId, token_id: TokenId) -> bool:
        return token_id in self.token_balances.get(account_id, {})

    def total_hbars(self) -> int:
        """Sum of all hbar balances in tinybars, accounts sorted for determinism."""
        return sum(self.hbar_balances[a] for a in sorted(self.hbar_balances))

    def token_holdings(self, token_id: TokenId) -> int:
        """Sum of all account balances of a token."""
        return sum(held.get(token_id, 0) for _, held in sorted(self.token_balances.items()))

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Verify that no value was created or destroyed.

        Checks that all hbar balances sum to the genesis supply and that every
        token's balances sum to its total supply.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'discrepancies': List[Dict] - entity, expected, actual for each violation
        """
        discrepancies = []
        hbars = self.total_hbars()
        if hbars != HBAR_TOTAL_SUPPLY_TINYBARS:
            discrepancies.append({
                'entity': 'hbar',
                'expected': HBAR_TOTAL_SUPPLY_TINYBARS,
                'actual': hbars,
            })
        for token_id, token in sorted(self.tokens.items()):
            held = self.token_holdings(token_id)
            if held != token.total_supply:
                discrepancies.append({
                    'entity': str(token_id),
                    'expected': token.total_supply,
                    'actual': held,
                })
        return {
            'valid': len(discrepancies) == 0,
            'discrepancies': discrepancies,
        }

    def __repr__(self) -> str:
        return (
            f"LocalNetwork({self.name!r}, accounts={len(self.keys)}, tokens={len(self.tokens)}, "
            f"topics={len(self.topics)}, transactions={len(self.transaction_log)})"
        )
