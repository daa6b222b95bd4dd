import pytest

from paygate.status import TransactionStatus, map_gateway_status, next_status


class TestMapGatewayStatus:
    @pytest.mark.parametrize("raw, expected", [
        ("settlement", TransactionStatus.SETTLEMENT),
        ("deny", TransactionStatus.DENY),
        ("cancel", TransactionStatus.CANCEL),
        ("expire", TransactionStatus.EXPIRE),
        ("failure", TransactionStatus.FAILURE),
        (" Settlement ", TransactionStatus.SETTLEMENT),
    ])
    def test_known_statuses(self, raw, expected):
        assert map_gateway_status(raw) is expected

    def test_pending_does_not_move(self):
        assert map_gateway_status("pending") is None

    def test_capture_depends_on_fraud_review(self):
        assert map_gateway_status("capture", "accept") is TransactionStatus.CAPTURE
        assert map_gateway_status("capture") is TransactionStatus.CAPTURE
        assert map_gateway_status("capture", "challenge") is None

    @pytest.mark.parametrize("raw", ["refund", "partial_refund", "chargeback", "authorize"])
    def test_ignored_statuses(self, raw):
        assert map_gateway_status(raw) is None

    def test_unknown_status_raises(self):
        with pytest.raises(ValueError):
            map_gateway_status("on_hold")


class TestNextStatus:
    def test_pending_moves_forward(self):
        assert next_status(TransactionStatus.PENDING, TransactionStatus.SETTLEMENT) is TransactionStatus.SETTLEMENT
        assert next_status(TransactionStatus.PENDING, TransactionStatus.CAPTURE) is TransactionStatus.CAPTURE

    def test_capture_can_settle(self):
        assert next_status(TransactionStatus.CAPTURE, TransactionStatus.SETTLEMENT) is TransactionStatus.SETTLEMENT

    def test_never_back_to_pending(self):
        assert next_status(TransactionStatus.CAPTURE, TransactionStatus.PENDING) is None

    def test_same_status_is_noop(self):
        assert next_status(TransactionStatus.CAPTURE, TransactionStatus.CAPTURE) is None

    @pytest.mark.parametrize("terminal", [
        TransactionStatus.SETTLEMENT,
        TransactionStatus.DENY,
        TransactionStatus.CANCEL,
        TransactionStatus.EXPIRE,
        TransactionStatus.FAILURE,
    ])
    def test_terminal_is_final(self, terminal):
        assert terminal.is_terminal
        for incoming in TransactionStatus:
            assert next_status(terminal, incoming) is None

    def test_paid_statuses(self):
        assert TransactionStatus.CAPTURE.is_paid
        assert TransactionStatus.SETTLEMENT.is_paid
        assert not TransactionStatus.PENDING.is_paid
        assert not TransactionStatus.CAPTURE.is_terminal
