from __future__ import annotations

from decimal import Decimal

import pytest
from conftest import ADDRESSES

from vault_engine.constants import FailureReason, WithdrawalPhase
from vault_engine.exceptions import (
    EndpointUnavailable,
    InvalidAmount,
    InvalidTransition,
    TransactionFailed,
    UserRejected,
    ValidationError,
    WithdrawalInProgress,
    WrongNetwork,
)
from vault_engine.withdrawals import WithdrawalStateMachine

WITHDRAWABLE = Decimal(40)


@pytest.fixture
def machine(strategy, signer, reader, dispatcher, settings) -> WithdrawalStateMachine:
    return WithdrawalStateMachine(strategy, signer, reader, dispatcher, settings=settings)


def _approved(machine: WithdrawalStateMachine, amount: str = "10") -> None:
    machine.start(amount, "USDC", WITHDRAWABLE)
    machine.wait_for_approval()
    assert machine.phase is WithdrawalPhase.APPROVED


class TestStartValidation:
    def test_scenario_c_amount_above_withdrawable(self, machine, dispatcher):
        with pytest.raises(InvalidAmount):
            machine.start("50", "USDC", WITHDRAWABLE)

        assert machine.phase is WithdrawalPhase.IDLE
        assert dispatcher.submitted == []

    @pytest.mark.parametrize("amount", ["0", "-1", 0, "abc", ""])
    def test_non_positive_or_invalid_amounts(self, machine, dispatcher, amount):
        with pytest.raises(InvalidAmount):
            machine.start(amount, "USDC", WITHDRAWABLE)

        assert machine.phase is WithdrawalPhase.IDLE
        assert dispatcher.submitted == []

    def test_amount_with_too_many_decimals(self, machine, dispatcher):
        with pytest.raises(InvalidAmount):
            machine.start("0.0000000000000000001", "USDC", WITHDRAWABLE)

        assert dispatcher.submitted == []

    def test_network_must_be_withdrawable(self, machine, dispatcher):
        with pytest.raises(ValidationError):
            machine.start("10", "USDC", WITHDRAWABLE, target_network="base")

        assert machine.phase is WithdrawalPhase.IDLE
        assert dispatcher.submitted == []

    def test_unknown_asset_rejected(self, machine, dispatcher):
        with pytest.raises(ValidationError) as exc_info:
            machine.start("10", "DAI", WITHDRAWABLE)

        assert exc_info.value.field == "target_asset"
        assert dispatcher.submitted == []

    def test_wrong_network_blocks_submission(self, machine, signer, dispatcher):
        signer.switch_network(8453)

        with pytest.raises(WrongNetwork) as exc_info:
            machine.start("10", "USDC", WITHDRAWABLE)

        assert exc_info.value.expected_chain_id == 1
        assert exc_info.value.actual_chain_id == 8453
        assert machine.phase is WithdrawalPhase.IDLE
        assert dispatcher.submitted == []


class TestHappyPath:
    def test_full_flow(self, machine, dispatcher, reader):
        snapshot = machine.start("10", "USDC", WITHDRAWABLE)

        assert snapshot.phase is WithdrawalPhase.APPROVING
        approve = dispatcher.submitted[0]
        assert approve.function == "approve"
        assert approve.network == "ethereum"
        assert approve.chain_id == 1
        assert approve.address == ADDRESSES.share_eth
        assert approve.args == (ADDRESSES.solver, 10 * 10**18)
        assert snapshot.approval_tx_hash == approve.tx_hash
        assert snapshot.approval_tx_url == f"https://etherscan.io/tx/{approve.tx_hash}"

        assert machine.wait_for_approval().phase is WithdrawalPhase.APPROVED

        snapshot = machine.confirm_withdraw()
        assert snapshot.phase is WithdrawalPhase.CONFIRMING
        request = dispatcher.submitted[1]
        assert request.function == "requestOnChainWithdraw"
        assert request.address == ADDRESSES.solver
        assert request.args == (ADDRESSES.usdc_eth, 10 * 10**18, 0, 432_000)
        assert dispatcher.simulated == ["requestOnChainWithdraw"]
        assert snapshot.preview_assets_out == Decimal("49.5")
        assert ("isPaused", "ethereum") in reader.calls
        assert ("allowance", "ethereum") in reader.calls

        snapshot = machine.wait_for_withdrawal()
        assert snapshot.phase is WithdrawalPhase.SUCCEEDED
        assert snapshot.withdraw_tx_hash == request.tx_hash
        assert snapshot.failure_reason is None

    def test_share_decimals_override(self, machine, dispatcher):
        machine.start("1.5", "USDC", WITHDRAWABLE, share_decimals=6)

        assert dispatcher.submitted[0].args == (ADDRESSES.solver, 1_500_000)

    def test_check_approval_single_read(self, machine):
        machine.start("10", "USDC", WITHDRAWABLE)

        assert machine.check_approval().phase is WithdrawalPhase.APPROVED

    def test_succeeded_is_terminal_until_reset(self, machine):
        _approved(machine)
        machine.confirm_withdraw()
        machine.wait_for_withdrawal()

        with pytest.raises(InvalidTransition):
            machine.start("1", "USDC", WITHDRAWABLE)

        assert machine.reset().phase is WithdrawalPhase.IDLE
        assert machine.snapshot().request is None


class TestOrdering:
    def test_no_withdraw_request_before_approval(self, machine, dispatcher):
        machine.start("10", "USDC", WITHDRAWABLE)

        with pytest.raises(InvalidTransition):
            machine.confirm_withdraw()

        assert dispatcher.functions == ["approve"]

    def test_confirm_from_idle_rejected(self, machine, dispatcher):
        with pytest.raises(InvalidTransition):
            machine.confirm_withdraw()

        assert dispatcher.submitted == []

    def test_second_start_while_in_flight(self, machine, dispatcher):
        machine.start("10", "USDC", WITHDRAWABLE)

        with pytest.raises(WithdrawalInProgress):
            machine.start("5", "USDC", WITHDRAWABLE)

        assert dispatcher.functions == ["approve"]

    def test_wrong_network_at_confirm_leaves_state(self, machine, signer, dispatcher):
        _approved(machine)
        signer.switch_network(8453)

        with pytest.raises(WrongNetwork):
            machine.confirm_withdraw()

        assert machine.phase is WithdrawalPhase.APPROVED
        signer.switch_network(1)
        assert machine.confirm_withdraw().phase is WithdrawalPhase.CONFIRMING
        assert dispatcher.functions == ["approve", "requestOnChainWithdraw"]


class TestFailures:
    def test_scenario_d_approval_revert_then_reset(self, machine, dispatcher):
        machine.start("10", "USDC", WITHDRAWABLE)
        first_hash = dispatcher.submitted[0].tx_hash
        dispatcher.statuses[first_hash] = 0

        with pytest.raises(TransactionFailed):
            machine.wait_for_approval()

        snapshot = machine.snapshot()
        assert snapshot.phase is WithdrawalPhase.FAILED
        assert snapshot.failure_reason is FailureReason.TRANSACTION_FAILED
        assert snapshot.approval_tx_hash == first_hash

        with pytest.raises(InvalidTransition):
            machine.start("10", "USDC", WITHDRAWABLE)

        machine.reset()
        snapshot = machine.start("10", "USDC", WITHDRAWABLE)
        assert snapshot.phase is WithdrawalPhase.APPROVING
        assert snapshot.approval_tx_hash != first_hash
        assert snapshot.failure_reason is None

    def test_user_rejected_approval(self, machine, dispatcher):
        dispatcher.submit_errors["approve"] = UserRejected("rejected")

        with pytest.raises(UserRejected):
            machine.start("10", "USDC", WITHDRAWABLE)

        snapshot = machine.snapshot()
        assert snapshot.phase is WithdrawalPhase.FAILED
        assert snapshot.failure_reason is FailureReason.USER_REJECTED

    def test_endpoint_failure_on_submit(self, machine, dispatcher):
        dispatcher.submit_errors["approve"] = EndpointUnavailable("down", network="ethereum")

        with pytest.raises(EndpointUnavailable):
            machine.start("10", "USDC", WITHDRAWABLE)

        assert machine.snapshot().failure_reason is FailureReason.ENDPOINT_UNAVAILABLE

    def test_withdraw_request_revert(self, machine, dispatcher):
        _approved(machine)
        machine.confirm_withdraw()
        dispatcher.statuses[dispatcher.submitted[1].tx_hash] = 0

        with pytest.raises(TransactionFailed):
            machine.wait_for_withdrawal()

        assert machine.snapshot().failure_reason is FailureReason.TRANSACTION_FAILED

    def test_solver_paused(self, machine, dispatcher, reader):
        _approved(machine)
        reader.paused = True

        with pytest.raises(TransactionFailed):
            machine.confirm_withdraw()

        snapshot = machine.snapshot()
        assert snapshot.phase is WithdrawalPhase.FAILED
        assert snapshot.failure_reason is FailureReason.SOLVER_PAUSED
        assert dispatcher.functions == ["approve"]

    def test_pause_check_failure_does_not_block(self, machine, dispatcher, reader):
        _approved(machine)
        reader.paused = EndpointUnavailable(
            "execution reverted: function selector not found", network="ethereum"
        )

        snapshot = machine.confirm_withdraw()

        assert snapshot.phase is WithdrawalPhase.CONFIRMING
        assert dispatcher.simulated == ["requestOnChainWithdraw"]
        assert dispatcher.functions == ["approve", "requestOnChainWithdraw"]

    def test_insufficient_allowance(self, machine, dispatcher, reader):
        _approved(machine)
        reader.allowance_value = 1

        with pytest.raises(TransactionFailed):
            machine.confirm_withdraw()

        assert machine.snapshot().failure_reason is FailureReason.INSUFFICIENT_ALLOWANCE
        assert dispatcher.functions == ["approve"]

    def test_simulation_revert(self, machine, dispatcher):
        _approved(machine)
        dispatcher.simulate_error = TransactionFailed("execution reverted")

        with pytest.raises(TransactionFailed):
            machine.confirm_withdraw()

        assert machine.snapshot().failure_reason is FailureReason.TRANSACTION_FAILED
        assert dispatcher.functions == ["approve"]


class TestStillConfirming:
    def test_pending_receipt_keeps_phase(self, machine, dispatcher):
        machine.start("10", "USDC", WITHDRAWABLE)
        dispatcher.statuses[dispatcher.submitted[0].tx_hash] = None

        assert machine.wait_for_approval(timeout=1).phase is WithdrawalPhase.APPROVING
        assert machine.check_approval().phase is WithdrawalPhase.APPROVING

    def test_receipt_lookup_failure_is_not_a_failure(self, machine, dispatcher):
        _approved(machine)
        machine.confirm_withdraw()
        dispatcher.receipt_error = EndpointUnavailable("down", network="ethereum")

        assert machine.check_withdrawal().phase is WithdrawalPhase.CONFIRMING

    def test_receipt_for_abandoned_approval_is_ignored(self, machine, dispatcher):
        machine.start("10", "USDC", WITHDRAWABLE)
        old_hash = dispatcher.submitted[0].tx_hash
        dispatcher.statuses[old_hash] = 0
        receipt = dispatcher.get_receipt("ethereum", old_hash)

        def restart_then_return_old_receipt(network, tx_hash, timeout=None):
            machine.reset(force=True)
            machine.start("5", "USDC", WITHDRAWABLE)
            return receipt

        dispatcher.wait = restart_then_return_old_receipt

        snapshot = machine.wait_for_approval()

        assert snapshot.phase is WithdrawalPhase.APPROVING
        assert snapshot.failure_reason is None
        assert snapshot.approval_tx_hash == dispatcher.submitted[1].tx_hash
        assert snapshot.request.amount == Decimal(5)

    def test_receipt_for_abandoned_request_is_ignored(self, machine, dispatcher):
        _approved(machine)
        machine.confirm_withdraw()
        old_receipt = dispatcher.get_receipt("ethereum", dispatcher.submitted[1].tx_hash)
        original_wait = dispatcher.wait

        def restart_then_return_old_receipt(network, tx_hash, timeout=None):
            dispatcher.wait = original_wait
            machine.reset(force=True)
            _approved(machine, "5")
            machine.confirm_withdraw()
            return old_receipt

        dispatcher.wait = restart_then_return_old_receipt

        snapshot = machine.wait_for_withdrawal()

        assert snapshot.phase is WithdrawalPhase.CONFIRMING
        assert snapshot.withdraw_tx_hash == dispatcher.submitted[3].tx_hash

    def test_reset_in_flight_requires_force(self, machine):
        machine.start("10", "USDC", WITHDRAWABLE)

        with pytest.raises(WithdrawalInProgress):
            machine.reset()

        assert machine.reset(force=True).phase is WithdrawalPhase.IDLE


class TestPreview:
    def test_preview_recomputed_on_changes(self, machine, reader):
        assert machine.on_asset_changed("USDC") is None
        assert machine.on_amount_changed("50") == Decimal("49.5")

        reader.preview_value = 9_900_000
        assert machine.on_amount_changed("10") == Decimal("9.9")
        assert machine.on_network_changed("ethereum") == Decimal("9.9")
        assert machine.snapshot().preview_assets_out == Decimal("9.9")

    def test_preview_failure_is_advisory(self, machine, reader, unavailable):
        reader.preview_value = unavailable
        machine.on_asset_changed("USDC")

        assert machine.on_amount_changed("50") is None

    def test_zero_amount_skips_preview(self, machine, reader):
        machine.on_asset_changed("USDC")

        assert machine.on_amount_changed("0") is None
        assert ("previewAssetsOut", "ethereum") not in reader.calls

    def test_changes_rejected_while_in_flight(self, machine):
        machine.start("10", "USDC", WITHDRAWABLE)

        with pytest.raises(WithdrawalInProgress):
            machine.on_amount_changed("5")

    def test_non_withdrawable_network_rejected(self, machine):
        with pytest.raises(ValidationError):
            machine.on_network_changed("base")
