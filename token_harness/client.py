"""
client.py - Execution Context

A Context binds an operator identity (account + private key) to a network.
It is immutable: with_operator() returns a new Context and never changes the
one it was called on, so concurrent flows can each hold their own identity
against a shared network.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Union

from .core import AccountId, Network, NoOperatorError, TransactionId
from .keys import PrivateKey, PublicKey


@dataclass(frozen=True, slots=True)
class Operator:
    """
    Identity that pays for and signs transactions submitted through a Context.

    The private key is excluded from repr.
    """
    account_id: AccountId
    private_key: PrivateKey = field(repr=False)

    @property
    def public_key(self) -> PublicKey:
        return self.private_key.public_key


class Context:
    """
    Network handle plus an optional operator identity.

    Example:
        base = Context(network)
        alice_ctx = base.with_operator(alice.account_id, alice.private_key)
        response = await TokenAssociateTransaction() \\
            .set_account_id(alice.account_id).set_token_ids([token_id]) \\
            .execute(alice_ctx)
    """

    __slots__ = ("_network", "_operator")

    def __init__(self, network: Network, operator: Optional[Operator] = None):
        self._network = network
        self._operator = operator

    @property
    def network(self) -> Network:
        return self._network

    @property
    def operator(self) -> Optional[Operator]:
        return self._operator

    def with_operator(
        self,
        account_id: Union[AccountId, str],
        private_key: Union[PrivateKey, str],
    ) -> 'Context':
        """
        Return a new Context on the same network with the given operator.

        Args:
            account_id: Operator account (AccountId or "0.0.n" string)
            private_key: Operator key (PrivateKey or hex string)
        """
        if isinstance(private_key, str):
            private_key = PrivateKey.from_string(private_key)
        return Context(self._network, Operator(AccountId.coerce(account_id), private_key))

    def without_operator(self) -> 'Context':
        return Context(self._network)

    def require_operator(self) -> Operator:
        """
        Return the bound operator.

        Raises:
            NoOperatorError: If no operator is bound
        """
        if self._operator is None:
            raise NoOperatorError("Context has no operator; call with_operator() first")
        return self._operator

    def next_transaction_id(self) -> TransactionId:
        """Fresh transaction id paid by the operator."""
        return self._network.new_transaction_id(self.require_operator().account_id)

    def __repr__(self) -> str:
        who = self._operator.account_id if self._operator else None
        return f"Context(network={getattr(self._network, 'name', self._network)!r}, operator={who})"
