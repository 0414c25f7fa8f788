"""Unit tests for transaction and refund state machines."""

import pytest

from opstower_shared.models import RefundStatus, TransactionStatus, TransitionSource
from opstower_api.services.errors import IllegalTransition
from opstower_api.services.state_machine import (
    transaction_transition_allowed,
    transaction_transition_path,
    validate_refund_transition,
)


class TestTransactionTransitions:
    """Tests for the payment state machine."""

    @pytest.mark.parametrize("target", [
        TransactionStatus.PROCESSING,
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
    ])
    def test_pending_moves_forward_from_webhook(self, target):
        """Pending payments accept any forward status from a webhook."""
        assert transaction_transition_allowed(TransactionStatus.PENDING, target, TransitionSource.WEBHOOK)

    def test_completed_never_reverts(self):
        """A completed payment cannot return to pending or processing."""
        for target in (TransactionStatus.PENDING, TransactionStatus.PROCESSING):
            for source in TransitionSource:
                assert not transaction_transition_allowed(TransactionStatus.COMPLETED, target, source)

    def test_only_exit_from_completed_is_refund_pending(self):
        """Completed only moves on to refund_pending."""
        allowed = [
            t for t in TransactionStatus
            if transaction_transition_allowed(TransactionStatus.COMPLETED, t, TransitionSource.REFUND)
        ]
        assert allowed == [TransactionStatus.REFUND_PENDING]

    @pytest.mark.parametrize("terminal", [
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
        TransactionStatus.EXPIRED,
        TransactionStatus.REFUNDED,
    ])
    def test_terminal_states_are_final(self, terminal):
        """Failed, cancelled, expired and refunded accept nothing."""
        for target in TransactionStatus:
            assert not transaction_transition_allowed(terminal, target, TransitionSource.WEBHOOK)

    def test_pending_to_expired_reserved_for_sweep(self):
        """Only the expiry sweep may expire a pending payment."""
        assert transaction_transition_allowed(
            TransactionStatus.PENDING, TransactionStatus.EXPIRED, TransitionSource.EXPIRY_SWEEP
        )
        for source in (TransitionSource.WEBHOOK, TransitionSource.SYNC, TransitionSource.REFUND):
            assert not transaction_transition_allowed(
                TransactionStatus.PENDING, TransactionStatus.EXPIRED, source
            )

    def test_processing_can_expire_from_gateway(self):
        """A gateway may report expiry once the payment is processing."""
        assert transaction_transition_allowed(
            TransactionStatus.PROCESSING, TransactionStatus.EXPIRED, TransitionSource.WEBHOOK
        )

    def test_refund_pending_resolves_both_ways(self):
        """A full refund either lands or hands the payment back as completed."""
        for target in (TransactionStatus.REFUNDED, TransactionStatus.COMPLETED):
            assert transaction_transition_allowed(
                TransactionStatus.REFUND_PENDING, target, TransitionSource.REFUND
            )


class TestTransitionPath:
    """Tests for multi-step transition paths."""

    def test_direct_edge_is_single_step(self):
        path = transaction_transition_path(
            TransactionStatus.PENDING, TransactionStatus.COMPLETED, TransitionSource.WEBHOOK
        )
        assert path == [TransactionStatus.COMPLETED]

    def test_gateway_refund_of_completed_passes_refund_pending(self):
        path = transaction_transition_path(
            TransactionStatus.COMPLETED, TransactionStatus.REFUNDED, TransitionSource.WEBHOOK
        )
        assert path == [TransactionStatus.REFUND_PENDING, TransactionStatus.REFUNDED]

    def test_illegal_path_is_empty(self):
        path = transaction_transition_path(
            TransactionStatus.FAILED, TransactionStatus.COMPLETED, TransitionSource.WEBHOOK
        )
        assert path == []


class TestRefundTransitions:
    """Tests for the refund approval lifecycle."""

    def test_valid_lifecycle(self):
        assert validate_refund_transition(RefundStatus.PENDING, RefundStatus.APPROVED)
        assert validate_refund_transition(RefundStatus.APPROVED, RefundStatus.PROCESSED)
        assert validate_refund_transition(RefundStatus.APPROVED, RefundStatus.FAILED)
        assert validate_refund_transition(RefundStatus.PENDING, RefundStatus.REJECTED)

    def test_cannot_process_unapproved_refund(self):
        with pytest.raises(IllegalTransition):
            validate_refund_transition(RefundStatus.PENDING, RefundStatus.PROCESSED)

    def test_rejected_is_final(self):
        with pytest.raises(IllegalTransition):
            validate_refund_transition(RefundStatus.REJECTED, RefundStatus.APPROVED)
