"""
queries.py - Read-Only Queries and Topic Subscriptions

Queries read network state and never change it:
    - AccountBalanceQuery: hbar balance and token balances of an account
    - AccountInfoQuery: key, balance and token relationships of an account
    - TokenInfoQuery: token metadata and total supply
    - TopicInfoQuery: topic memo, keys and message count
    - TopicMessageQuery: message stream of a topic, pulled or pushed

Queries are free and do not require an operator.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union
import asyncio
import inspect
import logging

from .client import Context
from .core import (
    AccountId, TokenId, TopicId, TransactionId,
    AccountBalance, AccountInfo, TokenInfo, TopicInfo, TopicMessage,
    MessageStream, NetworkRejectionError,
)

logger = logging.getLogger(__name__)


class AccountBalanceQuery:
    def __init__(self):
        self.account_id: Optional[AccountId] = None

    def set_account_id(self, account_id: Union[AccountId, str]) -> 'AccountBalanceQuery':
        self.account_id = AccountId.coerce(account_id)
        return self

    async def execute(self, ctx: Context) -> AccountBalance:
        if self.account_id is None:
            raise ValueError("AccountBalanceQuery requires an account id")
        return await ctx.network.account_balance(self.account_id)


class AccountInfoQuery:
    def __init__(self):
        self.account_id: Optional[AccountId] = None

    def set_account_id(self, account_id: Union[AccountId, str]) -> 'AccountInfoQuery':
        self.account_id = AccountId.coerce(account_id)
        return self

    async def execute(self, ctx: Context) -> AccountInfo:
        if self.account_id is None:
            raise ValueError("AccountInfoQuery requires an account id")
        return await ctx.network.account_info(self.account_id)


class TokenInfoQuery:
    def __init__(self):
        self.token_id: Optional[TokenId] = None

    def set_token_id(self, token_id: Union[TokenId, str]) -> 'TokenInfoQuery':
        self.token_id = TokenId.coerce(token_id)
        return self

    async def execute(self, ctx: Context) -> TokenInfo:
        if self.token_id is None:
            raise ValueError("TokenInfoQuery requires a token id")
        return await ctx.network.token_info(self.token_id)


class TopicInfoQuery:
    def __init__(self):
        self.topic_id: Optional[TopicId] = None

    def set_topic_id(self, topic_id: Union[TopicId, str]) -> 'TopicInfoQuery':
        self.topic_id = TopicId.coerce(topic_id)
        return self

    async def execute(self, ctx: Context) -> TopicInfo:
        if self.topic_id is None:
            raise ValueError("TopicInfoQuery requires a topic id")
        return await ctx.network.topic_info(self.topic_id)


# ============================================================================
# TOPIC SUBSCRIPTIONS
# ============================================================================

MessageHandler = Callable[[TopicMessage], Optional[Awaitable[Any]]]
ErrorHandler = Callable[[Optional[TopicMessage], BaseException], Optional[Awaitable[Any]]]


class TopicMessageQuery:
    """
    Subscribe to a topic's messages in consensus order.

    By default delivery starts at the topic's first message and then follows
    new messages as they reach consensus.

    Example:
        handle = TopicMessageQuery().set_topic_id(topic_id).subscribe(
            ctx, on_error=lambda msg, err: print(err), on_message=print)
        ...
        handle.unsubscribe()
    """

    def __init__(self):
        self.topic_id: Optional[TopicId] = None
        self.start_time: Optional[datetime] = None
        self.limit: Optional[int] = None

    def set_topic_id(self, topic_id: Union[TopicId, str]) -> 'TopicMessageQuery':
        self.topic_id = TopicId.coerce(topic_id)
        return self

    def set_start_time(self, start_time: datetime) -> 'TopicMessageQuery':
        self.start_time = start_time
        return self

    def set_limit(self, limit: int) -> 'TopicMessageQuery':
        """Stop after `limit` delivered messages."""
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        self.limit = limit
        return self

    def stream(self, ctx: Context) -> MessageStream:
        """
        Open the raw message stream (pull style, `async for`).

        Chunks of a split message arrive one by one; subscribe() reassembles them.
        """
        if self.topic_id is None:
            raise ValueError("TopicMessageQuery requires a topic id")
        return ctx.network.open_topic_stream(self.topic_id, self.start_time)

    def subscribe(
        self,
        ctx: Context,
        on_error: Optional[ErrorHandler],
        on_message: MessageHandler,
    ) -> 'SubscriptionHandle':
        """
        Start push delivery on the running event loop.

        Args:
            ctx: Context whose network hosts the topic
            on_error: Called as on_error(message, error) on delivery faults.
                message is None for faults not tied to a message.
            on_message: Called once per message, in order. May be a coroutine function.

        Returns:
            SubscriptionHandle used to stop delivery
        """
        handle = SubscriptionHandle(self.stream(ctx), on_message, on_error, self.limit)
        handle._start()
        return handle


class SubscriptionHandle:
    """
    Running subscription.

    Chunks of a split message are held back until all of them arrived, then
    delivered once as a single message.
    A handler that raises is reported through on_error and delivery goes on.
    An unknown topic is reported once and ends the subscription.
    """

    def __init__(
        self,
        stream: MessageStream,
        on_message: MessageHandler,
        on_error: Optional[ErrorHandler],
        limit: Optional[int] = None,
    ):
        self._stream = stream
        self._on_message = on_message
        self._on_error = on_error
        self._limit = limit
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None
        self._pending: Dict[TransactionId, Dict[int, TopicMessage]] = {}
        self.delivered = 0

    def _start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._pump())

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled

    async def _pump(self) -> None:
        try:
            async for raw in self._stream:
                if self._cancelled:
                    break
                message = self._assemble(raw)
                if message is None:
                    continue
                try:
                    result = self._on_message(message)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    await self._report(message, e)
                self.delivered += 1
                if self._limit is not None and self.delivered >= self._limit:
                    break
        except NetworkRejectionError as e:
            # Terminal: unknown topic
            if not self._cancelled:
                await self._report(None, e)
        finally:
            self._stream.cancel()

    def _assemble(self, message: TopicMessage) -> Optional[TopicMessage]:
        """Message to deliver, or None while chunks of it are still missing."""
        chunk = message.chunk_info
        if chunk is None or chunk.total == 1:
            return message
        parts = self._pending.setdefault(chunk.initial_transaction_id, {})
        parts[chunk.number] = message
        if len(parts) < chunk.total:
            return None
        del self._pending[chunk.initial_transaction_id]
        ordered = tuple(parts[number] for number in sorted(parts))
        last = max(ordered, key=lambda m: m.sequence_number)
        return TopicMessage(
            topic_id=message.topic_id,
            contents=b"".join(m.contents for m in ordered),
            sequence_number=last.sequence_number,
            consensus_timestamp=last.consensus_timestamp,
            running_hash=last.running_hash,
            chunks=ordered,
        )

    async def _report(self, message: Optional[TopicMessage], error: Exception) -> None:
        if self._on_error is None:
            logger.error("topic subscription error (sequence=%s): %s",
                         message.sequence_number if message else None, error)
            return
        # A failing error handler is logged; delivery goes on
        try:
            result = self._on_error(message, error)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("topic subscription error handler failed (sequence=%s)",
                             message.sequence_number if message else None)

    def unsubscribe(self) -> None:
        """Stop delivery. Idempotent; no callback runs after this returns."""
        if self._cancelled:
            return
        self._cancelled = True
        self._stream.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        """Wait until delivery has stopped (limit reached, terminal error or unsubscribe)."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._cancelled:
                raise
