"""
test_prefill.py - Unit tests for the balance prefiller

Tests:
- validate_and_prefill_balance: exact top-up, no-op at or above target,
  idempotency, funding failures, self-funding rejected
- prefill_accounts: per-account outcomes, failures do not stop the batch
- main: the harness-prefill command line and its persisted sandbox state
"""

import json
import logging
import pytest

from token_harness import (
    Hbar, Status, AccountId,
    validate_and_prefill_balance, prefill_accounts,
    NoOperatorError, NetworkRejectionError, ConfigurationError,
)
from token_harness.core import DEFAULT_FEE_SCHEDULE, TX_CRYPTO_TRANSFER
from token_harness.keys import PrivateKey
from token_harness.prefill import DEFAULT_FUNDING_BALANCE, main

from tests.helpers import make_account, context_for


@pytest.fixture
def funder(network):
    return make_account(network, balance=10_000)


@pytest.fixture
def funding_ctx(network, funder):
    return context_for(network, funder)


class TestValidateAndPrefill:
    """Tests for validate_and_prefill_balance()."""

    @pytest.mark.asyncio
    async def test_tops_up_exactly_to_target(self, network, funder, funding_ctx):
        account = make_account(network, balance=10)
        receipt = await validate_and_prefill_balance(account.account_id, 100, funding_ctx)
        assert receipt.status is Status.SUCCESS
        assert network.get_hbar_balance(account.account_id) == Hbar.from_hbar(100)
        fee = DEFAULT_FEE_SCHEDULE[TX_CRYPTO_TRANSFER]
        assert network.get_hbar_balance(funder.account_id) == Hbar.from_hbar(10_000 - 90) - Hbar(fee)

    @pytest.mark.asyncio
    async def test_at_target_is_noop(self, network, funding_ctx):
        account = make_account(network, balance=100)
        assert await validate_and_prefill_balance(account.account_id, 100, funding_ctx) is None
        assert network.transaction_log == []

    @pytest.mark.asyncio
    async def test_above_target_is_noop(self, network, funding_ctx, caplog):
        account = make_account(network, balance=500)
        with caplog.at_level(logging.INFO, logger="token_harness.prefill"):
            assert await validate_and_prefill_balance(account.account_id, 100, funding_ctx) is None
        assert "at or above the target" in caplog.text
        assert network.get_hbar_balance(account.account_id) == Hbar.from_hbar(500)

    @pytest.mark.asyncio
    async def test_second_call_transfers_nothing(self, network, funding_ctx):
        account = make_account(network, balance=0)
        first = await validate_and_prefill_balance(account.account_id, "12.5", funding_ctx)
        assert first is not None
        submitted = len(network.transaction_log)
        second = await validate_and_prefill_balance(account.account_id, "12.5", funding_ctx)
        assert second is None
        assert len(network.transaction_log) == submitted
        assert network.get_hbar_balance(account.account_id) == Hbar.from_hbar("12.5")

    @pytest.mark.asyncio
    async def test_no_operator(self, network, base_ctx, accounts):
        with pytest.raises(NoOperatorError):
            await validate_and_prefill_balance(accounts[0].account_id, 100, base_ctx)

    @pytest.mark.asyncio
    async def test_unknown_account(self, funding_ctx):
        with pytest.raises(NetworkRejectionError, match="INVALID_ACCOUNT_ID"):
            await validate_and_prefill_balance(AccountId(0, 0, 123456), 100, funding_ctx)

    @pytest.mark.asyncio
    async def test_funding_account_too_poor(self, network):
        poor_funder = make_account(network, balance=1)
        account = make_account(network, balance=0)
        with pytest.raises(NetworkRejectionError, match="INSUFFICIENT_ACCOUNT_BALANCE"):
            await validate_and_prefill_balance(account.account_id, 100, context_for(network, poor_funder))
        assert network.get_hbar_balance(account.account_id) == Hbar(0)

    @pytest.mark.asyncio
    async def test_funding_account_cannot_top_itself_up(self, network, funder, funding_ctx):
        with pytest.raises(ConfigurationError, match="funding account"):
            await validate_and_prefill_balance(funder.account_id, 50_000, funding_ctx)
        assert network.transaction_log == []
        assert network.get_hbar_balance(funder.account_id) == Hbar.from_hbar(10_000)
        assert await validate_and_prefill_balance(funder.account_id, 5_000, funding_ctx) is None


class TestPrefillAccounts:
    """Tests for prefill_accounts()."""

    @pytest.mark.asyncio
    async def test_outcomes_per_account(self, network, funding_ctx):
        low = make_account(network, balance=1)
        high = make_account(network, balance=200)
        missing = AccountId(0, 0, 987654)
        results = await prefill_accounts([low.account_id, str(missing), high.account_id], 100, funding_ctx)

        assert list(results) == [low.account_id, missing, high.account_id]
        assert results[low.account_id].ok and results[low.account_id].topped_up
        assert results[high.account_id].ok and not results[high.account_id].topped_up
        assert not results[missing].ok
        assert results[missing].error.status is Status.INVALID_ACCOUNT_ID
        assert network.get_hbar_balance(low.account_id) == Hbar.from_hbar(100)

    @pytest.mark.asyncio
    async def test_funding_account_in_batch_fails_alone(self, network, funder, funding_ctx):
        other = make_account(network, balance=9_000)
        results = await prefill_accounts([funder.account_id, other.account_id], 15_000, funding_ctx)
        assert isinstance(results[funder.account_id].error, ConfigurationError)
        assert results[other.account_id].ok and results[other.account_id].topped_up
        assert network.get_hbar_balance(other.account_id) == Hbar.from_hbar(15_000)


class TestMain:
    """Tests for the harness-prefill entry point."""

    @pytest.fixture
    def configured(self, tmp_path, monkeypatch):
        funding_key = PrivateKey.generate()
        monkeypatch.setenv("MY_ACCOUNT_ID", "0.0.900")
        monkeypatch.setenv("MY_PRIVATE_KEY", funding_key.to_string_der())
        accounts_file = tmp_path / "accounts.json"
        accounts_file.write_text(json.dumps([
            {"id": "0.0.1001", "privateKey": PrivateKey.generate().to_string_der()},
            {"id": "0.0.1002", "privateKey": PrivateKey.generate().to_string_raw()},
        ]))
        return ["--accounts", str(accounts_file), "--env-file", str(tmp_path / ".env")]

    def test_success_exit_code(self, configured, caplog):
        with caplog.at_level(logging.INFO, logger="token_harness.prefill"):
            assert main(configured) == 0
        assert "0.0.1001 topped up" in caplog.text
        assert "0.0.1002 topped up" in caplog.text

    def test_custom_target(self, configured, caplog):
        with caplog.at_level(logging.INFO, logger="token_harness.prefill"):
            assert main(configured + ["--target", "5"]) == 0
        assert "topped up by 5 ℏ" in caplog.text

    def test_failure_exit_code(self, configured):
        assert main(configured + ["--funding-balance", "50"]) == 1

    def test_missing_credentials(self, configured, monkeypatch):
        monkeypatch.delenv("MY_PRIVATE_KEY")
        assert main(configured) == 1

    def test_missing_accounts_file(self, configured, tmp_path):
        assert main(["--accounts", str(tmp_path / "nope.json"), "--env-file", str(tmp_path / ".env")]) == 1

    def test_state_saved_next_to_accounts_file(self, configured, tmp_path):
        assert main(configured + ["--target", "25"]) == 0
        saved = json.loads((tmp_path / "sandbox_state.json").read_text())["balances"]
        assert saved["0.0.1001"] == Hbar.from_hbar(25).to_tinybars()
        assert saved["0.0.1002"] == Hbar.from_hbar(25).to_tinybars()
        assert saved["0.0.900"] < DEFAULT_FUNDING_BALANCE.to_tinybars() - Hbar.from_hbar(50).to_tinybars()

    def test_second_run_sees_first_run_balances(self, configured, tmp_path, caplog):
        assert main(configured) == 0
        first = json.loads((tmp_path / "sandbox_state.json").read_text())
        caplog.clear()
        with caplog.at_level(logging.INFO, logger="token_harness.prefill"):
            assert main(configured) == 0
        assert "topped up" not in caplog.text
        assert "at or above the target" in caplog.text
        assert json.loads((tmp_path / "sandbox_state.json").read_text()) == first

    def test_explicit_state_file(self, configured, tmp_path):
        state_file = tmp_path / "elsewhere.json"
        state_file.write_text(json.dumps({"balances": {"0.0.900": 1, "0.0.1001": Hbar.from_hbar(500).to_tinybars()}}))
        assert main(configured + ["--state", str(state_file)]) == 1
        saved = json.loads(state_file.read_text())["balances"]
        assert saved["0.0.1001"] == Hbar.from_hbar(500).to_tinybars()
        assert not (tmp_path / "sandbox_state.json").exists()

    def test_corrupt_state_file(self, configured, tmp_path):
        (tmp_path / "sandbox_state.json").write_text("{not json")
        assert main(configured) == 1
