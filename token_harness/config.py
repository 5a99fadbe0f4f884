"""
config.py - Static Configuration

Accounts used by scenarios and the prefill CLI:
1. Account: frozen (id, private key) pair
2. load_accounts: JSON account list, e.g.
       [{"id": "0.0.1001", "privateKey": "302e0201..."}]
   from an explicit path, $HARNESS_ACCOUNTS_FILE, or ./accounts.json
3. funding_account_from_env: funding credentials from MY_ACCOUNT_ID and
   MY_PRIVATE_KEY
4. load_environment: read a .env file into the process environment
5. load_sandbox_state / save_sandbox_state: hbar balances of the prefill
   sandbox, kept between command line runs

Private keys accept raw 32-byte hex or DER-prefixed Ed25519 hex. ECDSA
keys are rejected with a ConfigurationError.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union
import json
import os
import tempfile

from dotenv import load_dotenv

from .core import AccountId, ConfigurationError, Hbar
from .keys import PrivateKey, PublicKey


ACCOUNTS_FILE_ENV = "HARNESS_ACCOUNTS_FILE"
DEFAULT_ACCOUNTS_FILE = "accounts.json"
FUNDING_ACCOUNT_ID_ENV = "MY_ACCOUNT_ID"
FUNDING_PRIVATE_KEY_ENV = "MY_PRIVATE_KEY"
SANDBOX_STATE_ENV = "HARNESS_SANDBOX_STATE"
DEFAULT_SANDBOX_STATE_FILE = "sandbox_state.json"


@dataclass(frozen=True, slots=True)
class Account:
    """A ledger account usable as operator or signer. The key is excluded from repr."""
    account_id: AccountId
    private_key: PrivateKey = field(repr=False)

    @property
    def public_key(self) -> PublicKey:
        return self.private_key.public_key

    @classmethod
    def from_strings(cls, account_id: str, private_key: str) -> 'Account':
        """
        Build an account from its string forms.

        Raises:
            ConfigurationError: If the id or the key does not parse
        """
        try:
            return cls(AccountId.from_string(account_id), PrivateKey.from_string(private_key))
        except ValueError as e:
            raise ConfigurationError(f"Invalid account {account_id!r}: {e}") from e

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Account':
        """Build an account from {"id": ..., "privateKey": ...}."""
        try:
            account_id = data["id"]
            private_key = data["privateKey"]
        except (KeyError, TypeError) as e:
            raise ConfigurationError(f"Account entry needs 'id' and 'privateKey': {data!r}") from e
        if not isinstance(account_id, str) or not isinstance(private_key, str):
            raise ConfigurationError(f"Account 'id' and 'privateKey' must be strings: {account_id!r}")
        return cls.from_strings(account_id, private_key)

    def to_dict(self) -> Dict[str, str]:
        return {"id": str(self.account_id), "privateKey": self.private_key.to_string_der()}


def _resolve_accounts_path(path: Optional[Union[str, Path]]) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(ACCOUNTS_FILE_ENV)
    if env_path:
        return Path(env_path)
    return Path(DEFAULT_ACCOUNTS_FILE)


def load_accounts(path: Optional[Union[str, Path]] = None) -> List[Account]:
    """
    Load the static account list.

    Args:
        path: JSON file. Defaults to $HARNESS_ACCOUNTS_FILE, then ./accounts.json

    Returns:
        Accounts in file order

    Raises:
        ConfigurationError: If the file is missing, not JSON, not a list,
            or holds an invalid entry
    """
    resolved = _resolve_accounts_path(path)
    try:
        raw = json.loads(resolved.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(f"Accounts file not found: {resolved}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Accounts file {resolved} is not valid JSON: {e}") from e
    if not isinstance(raw, list):
        raise ConfigurationError(f"Accounts file {resolved} must hold a JSON list")
    return [Account.from_dict(entry) for entry in raw]


def funding_account_from_env(environ: Optional[Mapping[str, str]] = None) -> Account:
    """
    Funding account from MY_ACCOUNT_ID / MY_PRIVATE_KEY.

    Raises:
        ConfigurationError: If either variable is missing or invalid
    """
    env = os.environ if environ is None else environ
    account_id = env.get(FUNDING_ACCOUNT_ID_ENV)
    private_key = env.get(FUNDING_PRIVATE_KEY_ENV)
    if not account_id or not private_key:
        raise ConfigurationError(
            f"Environment variables {FUNDING_ACCOUNT_ID_ENV} and "
            f"{FUNDING_PRIVATE_KEY_ENV} must be present"
        )
    return Account.from_strings(account_id, private_key)


def load_environment(dotenv_path: Optional[Union[str, Path]] = None) -> bool:
    """Load a .env file without overriding variables already set. Returns True if one was found."""
    return load_dotenv(dotenv_path, override=False)


# ============================================================================
# SANDBOX STATE
# ============================================================================

def resolve_sandbox_state_path(
    path: Optional[Union[str, Path]] = None,
    accounts_path: Optional[Union[str, Path]] = None,
) -> Path:
    """
    Location of the persisted sandbox state.

    An explicit path wins, then $HARNESS_SANDBOX_STATE, then
    sandbox_state.json next to the accounts file.
    """
    if path is not None:
        return Path(path)
    env_path = os.environ.get(SANDBOX_STATE_ENV)
    if env_path:
        return Path(env_path)
    return _resolve_accounts_path(accounts_path).with_name(DEFAULT_SANDBOX_STATE_FILE)


def load_sandbox_state(path: Union[str, Path]) -> Dict[AccountId, Hbar]:
    """
    Read persisted hbar balances, e.g. {"balances": {"0.0.1001": 10000000000}}.

    Balances are stored in tinybars. A missing file is an empty state.

    Raises:
        ConfigurationError: If the file is not JSON or holds an invalid entry
    """
    resolved = Path(path)
    try:
        raw = json.loads(resolved.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Sandbox state {resolved} is not valid JSON: {e}") from e
    balances = raw.get("balances") if isinstance(raw, dict) else None
    if not isinstance(balances, dict):
        raise ConfigurationError(f"Sandbox state {resolved} must hold a 'balances' object")
    state: Dict[AccountId, Hbar] = {}
    for account_id, tinybars in balances.items():
        if not isinstance(tinybars, int) or isinstance(tinybars, bool) or tinybars < 0:
            raise ConfigurationError(f"Invalid balance for {account_id!r} in {resolved}: {tinybars!r}")
        try:
            state[AccountId.from_string(account_id)] = Hbar.from_tinybars(tinybars)
        except ValueError as e:
            raise ConfigurationError(f"Invalid account id {account_id!r} in {resolved}: {e}") from e
    return state


def save_sandbox_state(path: Union[str, Path], balances: Mapping[AccountId, Hbar]) -> None:
    """Write hbar balances (in tinybars) for the next run. The file is replaced atomically."""
    payload = {"balances": {str(acc): amount.to_tinybars() for acc, amount in balances.items()}}
    directory = Path(path).parent
    directory.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", dir=directory, delete=False) as tmp:
        json.dump(payload, tmp, indent=2, sort_keys=True)
        tmp.write("\n")
        tmp_path = tmp.name
    os.replace(tmp_path, path)
