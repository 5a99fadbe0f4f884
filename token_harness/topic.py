"""
topic.py - Topic Builder

Helpers over the consensus (pub/sub) service: create a topic guarded by a
single or threshold submit key, publish messages, subscribe to a topic.
"""

from __future__ import annotations
from typing import Iterable, Optional, Sequence, Union
import logging

from .client import Context
from .core import MAX_CHUNKS, MESSAGE_SIZE_LIMIT, TopicId
from .keys import Key, KeyList, PrivateKey
from .queries import ErrorHandler, MessageHandler, SubscriptionHandle, TopicMessageQuery
from .token import AccountLike
from .transactions import TopicCreateTransaction, TopicMessageSubmitTransaction, TransactionResponse

logger = logging.getLogger(__name__)


def threshold_key(accounts: Sequence[AccountLike], threshold: int) -> KeyList:
    """
    M-of-N key list over the accounts' public keys, in account order.

    Raises:
        ValueError: If threshold is not between 1 and len(accounts)
    """
    return KeyList([a.private_key.public_key for a in accounts], threshold=threshold)


async def create_topic(memo: str, ctx: Context, submit_key: Optional[Key] = None) -> TransactionResponse:
    """
    Create a topic paid for by the context operator.

    Args:
        memo: Topic memo
        ctx: Context with an operator
        submit_key: Key guarding submissions. Defaults to the operator public key;
            may be a KeyList threshold key.

    Raises:
        NoOperatorError: If ctx has no operator (before any network call)
    """
    operator = ctx.require_operator()
    tx = TopicCreateTransaction().set_topic_memo(memo).set_submit_key(
        submit_key if submit_key is not None else operator.public_key
    )
    logger.info("creating topic %r submit_key=%r", memo, submit_key or operator.public_key)
    return await tx.execute(ctx)


async def submit_message(
    topic_id: Union[TopicId, str],
    message: Union[str, bytes],
    ctx: Context,
    signers: Iterable[PrivateKey] = (),
    max_chunks: int = MAX_CHUNKS,
) -> TransactionResponse:
    """
    Publish a message to a topic.

    The context operator always signs. Extra `signers` add their signatures,
    so a threshold submit key can be met by several parties. The submit key
    is enforced by the network.

    A message longer than MESSAGE_SIZE_LIMIT bytes is split into chunks,
    submitted in order. Every chunk names the transaction id of the first,
    and subscriptions deliver the reassembled message.

    Returns:
        Response of the first (or only) submission

    Raises:
        ValueError: If the message needs more than max_chunks chunks
            (before any network call)
    """
    payload = message.encode("utf-8") if isinstance(message, str) else bytes(message)
    chunks = [payload[i:i + MESSAGE_SIZE_LIMIT] for i in range(0, len(payload), MESSAGE_SIZE_LIMIT)] or [payload]
    if len(chunks) > max_chunks:
        raise ValueError(
            f"Message of {len(payload)} bytes needs {len(chunks)} chunks, more than {max_chunks}"
        )
    signers = list(signers)

    if len(chunks) == 1:
        tx = TopicMessageSubmitTransaction().set_topic_id(topic_id).set_message(payload)
        tx.freeze_with(ctx)
        for key in signers:
            tx.sign(key)
        return await tx.execute(ctx)

    initial_id = ctx.next_transaction_id()
    logger.info("submitting %d byte message to %s in %d chunks", len(payload), topic_id, len(chunks))
    responses = []
    for number, chunk in enumerate(chunks, start=1):
        tx = (
            TopicMessageSubmitTransaction()
            .set_topic_id(topic_id)
            .set_message(chunk)
            .set_chunk_info(initial_id, number, len(chunks))
        )
        tx.freeze_with(ctx, initial_id if number == 1 else None)
        for key in signers:
            tx.sign(key)
        responses.append(await tx.execute(ctx))
    return responses[0]


def subscribe_to_topic(
    topic_id: Union[TopicId, str],
    ctx: Context,
    on_error: Optional[ErrorHandler],
    on_message: MessageHandler,
) -> SubscriptionHandle:
    """Push-deliver a topic's messages from the first one on. Must run inside an event loop."""
    return TopicMessageQuery().set_topic_id(topic_id).subscribe(ctx, on_error, on_message)
