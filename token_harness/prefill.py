"""
prefill.py - Balance Prefiller

Tops up native-currency balances so scenarios can pay fees:
1. validate_and_prefill_balance: bring one account up to a target balance
2. prefill_accounts: run the prefill for many accounts, collecting failures
3. main: the `harness-prefill` command line entry point, whose sandbox
   balances persist in a JSON state file between runs

The prefill is idempotent: an account already at or above the target is left
alone. The balance check and the transfer are separate network calls, so two
concurrent prefills of the same account may both top it up.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union
import argparse
import asyncio
import logging
import os
import sys

from .client import Context
from .config import (
    Account, funding_account_from_env, load_accounts, load_environment,
    load_sandbox_state, resolve_sandbox_state_path, save_sandbox_state,
)
from .core import AccountId, ConfigurationError, HarnessError, Hbar, Receipt
from .network import LocalNetwork
from .queries import AccountBalanceQuery
from .transactions import TransferTransaction

logger = logging.getLogger(__name__)

DEFAULT_TARGET_HBAR = 100
DEFAULT_FUNDING_BALANCE = Hbar.from_hbar(1_000_000)
LOG_LEVEL_ENV = "HARNESS_LOG_LEVEL"


@dataclass(frozen=True, slots=True)
class PrefillResult:
    """Outcome for one account: a receipt (topped up), neither (already funded) or an error."""
    account_id: AccountId
    receipt: Optional[Receipt] = None
    error: Optional[HarnessError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def topped_up(self) -> bool:
        return self.receipt is not None


async def validate_and_prefill_balance(
    account_id: Union[AccountId, str],
    target_hbar: Union[Hbar, int, str],
    funding_ctx: Context,
) -> Optional[Receipt]:
    """
    Ensure an account holds at least `target_hbar`.

    If the balance is already at or above the target, nothing is submitted.
    Otherwise the funding context's operator transfers exactly the deficit,
    so the account lands on the target. The funding account pays the fee.

    Args:
        account_id: Account to top up
        target_hbar: Target balance (plain numbers are whole hbars)
        funding_ctx: Context whose operator is the funding account

    Returns:
        The transfer receipt, or None when no transfer was needed

    Raises:
        NoOperatorError: If funding_ctx has no operator
        NetworkRejectionError: If the balance query or the transfer is rejected
        ConfigurationError: If the account below target is the funding account itself
    """
    funding = funding_ctx.require_operator()
    account_id = AccountId.coerce(account_id)
    target = Hbar.coerce(target_hbar)

    balance = await AccountBalanceQuery().set_account_id(account_id).execute(funding_ctx)
    if balance.hbars >= target:
        logger.info("Account %s holds %s, at or above the target of %s", account_id, balance.hbars, target)
        return None

    if account_id == funding.account_id:
        # Both legs would net to zero and only the fee would move
        raise ConfigurationError(
            f"Account {account_id} is the funding account and cannot top itself up "
            f"(holds {balance.hbars}, target {target})"
        )

    deficit = target - balance.hbars
    tx = (
        TransferTransaction()
        .add_hbar_transfer(funding.account_id, deficit.negated())
        .add_hbar_transfer(account_id, deficit)
    )
    response = await tx.execute(funding_ctx)
    receipt = await response.get_receipt(funding_ctx)
    logger.info("Account %s topped up by %s from %s: %s", account_id, deficit, funding.account_id, receipt.status)
    return receipt


async def prefill_accounts(
    account_ids: Iterable[Union[AccountId, str]],
    target_hbar: Union[Hbar, int, str],
    funding_ctx: Context,
) -> Dict[AccountId, PrefillResult]:
    """
    Prefill each account in turn.

    A failure is logged and recorded for its account; the batch carries on.
    """
    results: Dict[AccountId, PrefillResult] = {}
    for raw_id in account_ids:
        account_id = AccountId.coerce(raw_id)
        try:
            receipt = await validate_and_prefill_balance(account_id, target_hbar, funding_ctx)
        except HarnessError as e:
            logger.error("Prefill of account %s failed: %s", account_id, e)
            results[account_id] = PrefillResult(account_id, error=e)
        else:
            results[account_id] = PrefillResult(account_id, receipt=receipt)
    return results


# ============================================================================
# COMMAND LINE
# ============================================================================

def build_sandbox(
    funding: Account,
    accounts: Sequence[Account],
    funding_balance: Hbar = DEFAULT_FUNDING_BALANCE,
    verbose: bool = False,
    balances: Optional[Mapping[AccountId, Hbar]] = None,
) -> LocalNetwork:
    """
    Sandbox seeded with the funding account and the configured accounts.

    Balances saved by an earlier run take precedence. Otherwise the funding
    account starts at funding_balance and the configured accounts start empty.
    """
    balances = balances or {}
    network = LocalNetwork("prefill", verbose=verbose)
    network.register_account(
        funding.private_key,
        balances.get(funding.account_id, funding_balance),
        account_id=funding.account_id,
    )
    for account in accounts:
        if not network.account_exists(account.account_id):
            network.register_account(
                account.private_key,
                balances.get(account.account_id, Hbar(0)),
                account_id=account.account_id,
            )
    return network


def sandbox_balances(network: LocalNetwork, account_ids: Iterable[AccountId]) -> Dict[AccountId, Hbar]:
    return {account_id: network.get_hbar_balance(account_id) for account_id in account_ids}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="harness-prefill",
        description="Top up configured accounts to a target hbar balance",
    )
    parser.add_argument(
        "--target",
        type=Hbar.from_hbar,
        default=Hbar.from_hbar(DEFAULT_TARGET_HBAR),
        help=f"Target balance in hbar (default {DEFAULT_TARGET_HBAR})",
    )
    parser.add_argument("--accounts", default=None, help="Accounts JSON file")
    parser.add_argument("--env-file", dest="env_file", default=None, help=".env file to load")
    parser.add_argument(
        "--state",
        default=None,
        help="Sandbox state JSON file (default: sandbox_state.json next to the accounts file)",
    )
    parser.add_argument(
        "--funding-balance",
        dest="funding_balance",
        type=Hbar.from_hbar,
        default=DEFAULT_FUNDING_BALANCE,
        help="Sandbox balance of the funding account in hbar, when no saved state holds one",
    )
    parser.add_argument("--log-level", dest="log_level", default=None, help="Log level")
    parser.add_argument("--verbose", action="store_true", help="Print every sandbox transaction")
    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run the prefill. Returns 0 when every account succeeded, 1 otherwise.

    The sandbox is rebuilt from the state file, and the resulting balances
    are written back to it, so a second run sees the first run's top-ups.
    """
    args = _build_parser().parse_args(argv)
    load_environment(args.env_file)
    _configure_logging(args.log_level or os.environ.get(LOG_LEVEL_ENV, "INFO"))

    try:
        funding = funding_account_from_env()
        accounts = load_accounts(args.accounts)
        state_path = resolve_sandbox_state_path(args.state, args.accounts)
        saved = load_sandbox_state(state_path)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1

    network = build_sandbox(funding, accounts, args.funding_balance, verbose=args.verbose, balances=saved)
    funding_ctx = Context(network).with_operator(funding.account_id, funding.private_key)
    results = asyncio.run(
        prefill_accounts([a.account_id for a in accounts], args.target, funding_ctx)
    )

    tracked = [funding.account_id] + [a.account_id for a in accounts]
    save_sandbox_state(state_path, sandbox_balances(network, tracked))
    logger.info("Sandbox state saved to %s", state_path)

    failed = [r for r in results.values() if not r.ok]
    logger.info("Prefilled %d account(s), %d failed", len(results), len(failed))
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
