"""
Payment lifecycle service.

Creates payments through the gateway, serves owner-scoped status and history,
cancels pending payments and reconciles gateway notifications with stored
transactions.

Every entry point takes the caller's user id explicitly (None when the
request is unauthenticated) instead of reading it from request state.
"""
import asyncio
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from paygate.errors import (
    ForbiddenError,
    InternalError,
    InvalidSignatureError,
    MalformedPayloadError,
    NotFoundError,
    TransactionNotCancellableError,
    UnauthenticatedError,
    UserNotFoundError,
    ValidationError,
)
from paygate.gateway.port import ChargeItem, Customer, PaymentGateway
from paygate.models import ItemDetailDB, TransactionDB, UserProfile
from paygate.schemas import AddressDetail, ItemDetailRequest, PaymentNotification
from paygate.status import TransactionStatus, map_gateway_status, next_status
from paygate.store import TransactionStore
from paygate.users import UserDirectory

logger = logging.getLogger(__name__)

# A CAS loses only when another writer moved the status forward, and there
# are at most two forward moves (pending -> capture -> terminal).
MAX_STATUS_UPDATE_ATTEMPTS = 3


def _require_caller(caller_id: Optional[str]) -> str:
    if not caller_id:
        raise UnauthenticatedError()
    return caller_id


class PaymentService:
    def __init__(
        self,
        store: TransactionStore,
        users: UserDirectory,
        gateway: PaymentGateway,
    ) -> None:
        self.store = store
        self.users = users
        self.gateway = gateway

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_payment(
        self,
        caller_id: Optional[str],
        items: Sequence[ItemDetailRequest],
        customer_details: Optional[AddressDetail] = None,
    ) -> TransactionDB:
        """Create a Snap (redirect) payment and record it as pending."""
        user, charge_items, amount = await self._prepare_charge(caller_id, items)
        return await asyncio.shield(
            self._charge_snap(user, charge_items, amount, customer_details)
        )

    async def create_qris_payment(
        self,
        caller_id: Optional[str],
        items: Sequence[ItemDetailRequest],
        customer_details: Optional[AddressDetail] = None,
    ) -> TransactionDB:
        """Create a QRIS payment and record it as pending."""
        user, charge_items, amount = await self._prepare_charge(caller_id, items)
        return await asyncio.shield(
            self._charge_qris(user, charge_items, amount, customer_details)
        )

    # The charge and its record run shielded: once the gateway accepts a
    # charge the record must land even if the caller goes away.

    async def _charge_snap(self, user, charge_items, amount, customer_details) -> TransactionDB:
        result = await self.gateway.create_charge(
            amount,
            charge_items,
            self._customer_from_profile(user),
            self._shipping_from_request(customer_details),
        )
        transaction = TransactionDB(
            order_id=result.order_id,
            user_id=user.id,
            amount=amount,
            items=[ItemDetailDB(**vars(item)) for item in charge_items],
            payment_type="snap",
            gateway_reference=result.token,
            redirect_url=result.redirect_url,
        )
        return await self._record(transaction)

    async def _charge_qris(self, user, charge_items, amount, customer_details) -> TransactionDB:
        result = await self.gateway.create_qris_charge(
            amount,
            charge_items,
            self._customer_from_profile(user),
            self._shipping_from_request(customer_details),
        )
        transaction = TransactionDB(
            order_id=result.order_id,
            user_id=user.id,
            amount=amount,
            items=[ItemDetailDB(**vars(item)) for item in charge_items],
            payment_type="qris",
            gateway_reference=result.qr_string,
            qr_url=result.qr_url,
        )
        return await self._record(transaction)

    async def _prepare_charge(
        self,
        caller_id: Optional[str],
        items: Sequence[ItemDetailRequest],
    ) -> Tuple[UserProfile, List[ChargeItem], int]:
        """Shared validation, user resolution and amount computation for both charge kinds."""
        user_id = _require_caller(caller_id)

        if not items:
            raise ValidationError("At least one item is required")
        for item in items:
            if item.price <= 0 or item.quantity <= 0:
                raise ValidationError(
                    "Item price and quantity must be positive",
                    {"item_id": item.id},
                )

        user = await self.users.get_user(user_id)
        if user is None:
            logger.error("Authenticated caller has no user record", extra={"user_id": user_id})
            raise UserNotFoundError("User not found", {"user_id": user_id})

        charge_items = [
            ChargeItem(id=item.id, name=item.name, price=item.price, quantity=item.quantity)
            for item in items
        ]
        amount = sum(item.price * item.quantity for item in charge_items)
        return user, charge_items, amount

    @staticmethod
    def _customer_from_profile(user: UserProfile) -> Customer:
        return Customer(
            first_name=user.full_name,
            email=user.email,
            phone=user.phone,
            address=user.address,
            city=user.city,
            postal_code=user.postal_code,
        )

    @staticmethod
    def _shipping_from_request(details: Optional[AddressDetail]) -> Optional[Customer]:
        if details is None or not details.address:
            return None
        return Customer(
            first_name=details.first_name or "",
            phone=details.phone,
            address=details.address,
            city=details.city,
            postal_code=details.postal_code,
        )

    async def _record(self, transaction: TransactionDB) -> TransactionDB:
        # Only reached after the gateway accepted the charge
        try:
            saved = await self.store.save(transaction)
        except Exception:
            logger.error(
                "Gateway accepted a charge that could not be recorded",
                extra={"order_id": transaction.order_id, "user_id": transaction.user_id},
                exc_info=True,
            )
            raise
        logger.info(
            "Payment created",
            extra={
                "order_id": saved.order_id,
                "user_id": saved.user_id,
                "payment_type": saved.payment_type,
            },
        )
        return saved

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_status(self, caller_id: Optional[str], order_id: str) -> TransactionDB:
        """
        Return the caller's transaction.

        Existence is checked before ownership, so a non-owner gets
        ForbiddenError rather than NotFoundError.
        """
        user_id = _require_caller(caller_id)
        transaction = await self.store.find_by_order_id(order_id)
        if transaction is None:
            raise NotFoundError("Transaction not found", {"order_id": order_id})
        if transaction.user_id != user_id:
            logger.warning("Status lookup by non-owner", extra={"order_id": order_id, "user_id": user_id})
            raise ForbiddenError("Not authorized to view this transaction", {"order_id": order_id})
        return transaction

    async def get_history(self, caller_id: Optional[str]) -> List[TransactionDB]:
        """All of the caller's transactions, newest first."""
        user_id = _require_caller(caller_id)
        return await self.store.find_by_user_id(user_id)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel_payment(self, caller_id: Optional[str], order_id: str) -> TransactionDB:
        transaction = await self.get_status(caller_id, order_id)
        if transaction.status.is_terminal:
            raise TransactionNotCancellableError(
                f"Transaction is already {transaction.status.value}",
                {"order_id": order_id, "status": transaction.status.value},
            )

        await self.gateway.cancel_charge(order_id)

        updated = await self._transition(order_id, lambda current: next_status(current, TransactionStatus.CANCEL))
        logger.info(
            "Payment cancelled",
            extra={"order_id": order_id, "transaction_status": updated.status.value},
        )
        return updated

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def handle_notification(self, payload: Mapping[str, Any]) -> TransactionDB:
        """
        Reconcile a gateway notification with the stored transaction.

        The signature is verified before anything else is read. Replays and
        notifications for transactions already in a terminal status are
        accepted without changing anything.
        """
        if not isinstance(payload, Mapping) or not self.gateway.verify_notification(payload):
            order_id = payload.get("order_id") if isinstance(payload, Mapping) else None
            logger.warning("Notification signature rejected", extra={"order_id": order_id})
            raise InvalidSignatureError("Invalid notification signature")

        try:
            notification = PaymentNotification.model_validate(dict(payload))
        except PydanticValidationError as e:
            raise MalformedPayloadError(
                "Notification payload is malformed",
                {"errors": e.errors(include_url=False, include_context=False, include_input=False)},
            ) from e

        try:
            incoming = map_gateway_status(notification.transaction_status, notification.fraud_status)
        except ValueError as e:
            raise MalformedPayloadError(
                "Unknown transaction status",
                {"order_id": notification.order_id, "transaction_status": notification.transaction_status},
            ) from e

        transaction = await self.store.find_by_order_id(notification.order_id)
        if transaction is None:
            logger.error("Notification for unknown order", extra={"order_id": notification.order_id})
            raise NotFoundError("Transaction not found", {"order_id": notification.order_id})

        self._check_amount(transaction, notification)

        updated = await self._transition(
            notification.order_id,
            lambda current: next_status(current, incoming),
            current=transaction,
        )
        logger.info(
            "Notification processed",
            extra={
                "order_id": notification.order_id,
                "transaction_status": notification.transaction_status,
            },
        )
        return updated

    @staticmethod
    def _check_amount(transaction: TransactionDB, notification: PaymentNotification) -> None:
        try:
            notified = Decimal(notification.gross_amount)
            if not notified.is_finite():
                raise InvalidOperation(notification.gross_amount)
            matches = notified == transaction.amount
        except InvalidOperation as e:
            raise MalformedPayloadError(
                "gross_amount is not a number",
                {"order_id": notification.order_id},
            ) from e
        if not matches:
            logger.error(
                "Notification amount does not match transaction",
                extra={"order_id": notification.order_id},
            )
            raise MalformedPayloadError(
                "gross_amount does not match the transaction amount",
                {"order_id": notification.order_id, "gross_amount": notification.gross_amount},
            )

    async def _transition(self, order_id: str, decide, current: Optional[TransactionDB] = None) -> TransactionDB:
        """
        Apply `decide(current_status)` with compare-and-set on the stored status.

        `decide` returns the status to write, or None to leave the record as
        is. When a concurrent writer changes the status first, the record is
        re-read and `decide` runs again against the new status.
        """
        for _ in range(MAX_STATUS_UPDATE_ATTEMPTS):
            if current is None:
                current = await self.store.find_by_order_id(order_id)
                if current is None:
                    raise NotFoundError("Transaction not found", {"order_id": order_id})

            target = decide(current.status)
            if target is None:
                return current

            updated = await self.store.compare_and_set_status(
                order_id, current.status, target, datetime.utcnow()
            )
            if updated is not None:
                logger.info(
                    "Transaction status changed",
                    extra={
                        "order_id": order_id,
                        "transaction_status": f"{current.status.value}->{target.value}",
                    },
                )
                return updated
            current = None

        raise InternalError("Transaction status kept changing during update", {"order_id": order_id})
