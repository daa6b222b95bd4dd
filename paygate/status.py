"""Transaction status vocabulary and the forward-only transition rules."""
from enum import Enum
from typing import Optional


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CAPTURE = "capture"
    SETTLEMENT = "settlement"
    DENY = "deny"
    CANCEL = "cancel"
    EXPIRE = "expire"
    FAILURE = "failure"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_paid(self) -> bool:
        return self in (TransactionStatus.CAPTURE, TransactionStatus.SETTLEMENT)


TERMINAL_STATUSES = frozenset({
    TransactionStatus.SETTLEMENT,
    TransactionStatus.DENY,
    TransactionStatus.CANCEL,
    TransactionStatus.EXPIRE,
    TransactionStatus.FAILURE,
})

# Gateway statuses that are acknowledged but never change local state
# (refunds and chargebacks are handled outside this service).
IGNORED_GATEWAY_STATUSES = frozenset({
    "authorize",
    "refund",
    "partial_refund",
    "chargeback",
    "partial_chargeback",
})


def map_gateway_status(transaction_status: str, fraud_status: Optional[str] = None) -> Optional[TransactionStatus]:
    """
    Translate a gateway `transaction_status` into the local vocabulary.

    Returns None when the notification should not move the transaction:
    `pending`, a capture still under fraud review, or a status listed in
    IGNORED_GATEWAY_STATUSES. Raises ValueError for anything unrecognised.
    """
    value = transaction_status.strip().lower()
    if value in IGNORED_GATEWAY_STATUSES:
        return None

    status = TransactionStatus(value)
    if status is TransactionStatus.PENDING:
        return None
    if status is TransactionStatus.CAPTURE and (fraud_status or "").lower() == "challenge":
        return None
    return status


def next_status(current: TransactionStatus, incoming: Optional[TransactionStatus]) -> Optional[TransactionStatus]:
    """Return the status to store, or None if `incoming` must be ignored."""
    if incoming is None or current.is_terminal:
        return None
    if incoming == current or incoming is TransactionStatus.PENDING:
        return None
    return incoming
