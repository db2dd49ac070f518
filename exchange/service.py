import logging
import math
from datetime import datetime, timezone
from typing import Optional

from .credit_history import CreditHistoryRecorder
from .errors import (
    ConflictError,
    ExternalServiceError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from .ledger_client import CustomerNotFoundError, LedgerClient, LedgerError
from .models import (
    Actor,
    AssignCreditRequest,
    AssignCreditResponse,
    CreateExchangeRequest,
    CreditHistoryEntry,
    ExchangeRequest,
    ExchangeStatus,
    StatusUpdateRequest,
    SubmitShippingRequest,
    TransitStatus,
    TransitUpdateRequest,
    UpdateExchangeRequest,
)
from .notifications import NotificationIntent, NotificationKind, NotificationQueue
from .store import ExchangeRequestStore
from .warehouses import WarehouseDirectory

logger = logging.getLogger(__name__)


# Status changes an admin may request directly. approved -> completed also
# happens as a side effect of transit completion.
STATUS_TRANSITIONS = {
    ExchangeStatus.PENDING: {ExchangeStatus.APPROVED, ExchangeStatus.DECLINED},
    ExchangeStatus.APPROVED: {ExchangeStatus.COMPLETED},
}

# Transit states each admin-set target may be entered from. "received" accepts
# any earlier state, including None, provided shipping details exist.
TRANSIT_PREDECESSORS = {
    TransitStatus.SHIPPING: {None, TransitStatus.SHIPPING},
    TransitStatus.RECEIVED: {None, TransitStatus.SHIPPING, TransitStatus.RECEIVED},
    TransitStatus.COMPLETED: {None, TransitStatus.SHIPPING, TransitStatus.RECEIVED},
}

REQUIRED_ITEM_FIELDS = ("product_name", "description", "brand", "condition")


def append_feedback(existing: str, note: Optional[str]) -> str:
    if not note or not note.strip():
        return existing
    return f"{existing or ''}\n{note.strip()}".strip()


class ExchangeService:
    """
    Lifecycle of exchange requests.

    The only writer of ``status``, ``transit_status`` and ``credit_amount``.
    Each operation loads the request, checks the transition, writes the
    result and, where relevant, touches the ledger and queues a notification.
    """

    def __init__(
        self,
        store: ExchangeRequestStore,
        warehouses: WarehouseDirectory,
        credit_history: CreditHistoryRecorder,
        ledger: LedgerClient,
        notifications: NotificationQueue,
        currency: str = "INR",
        guard_duplicate_credit: bool = True,
    ):
        self.store = store
        self.warehouses = warehouses
        self.credit_history = credit_history
        self.ledger = ledger
        self.notifications = notifications
        self.currency = currency
        self.guard_duplicate_credit = guard_duplicate_credit

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    def create_request(self, actor: Actor, request: CreateExchangeRequest) -> ExchangeRequest:
        self._require_actor(actor)
        missing = [f for f in REQUIRED_ITEM_FIELDS if not (getattr(request, f) or "").strip()]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        now = datetime.now(timezone.utc)
        created = self.store.create({
            "owner_id": actor.id,
            "owner_email": actor.email,
            "product_name": request.product_name,
            "description": request.description,
            "brand": request.brand,
            "condition": request.condition,
            "images": list(request.images),
            "status": ExchangeStatus.PENDING,
            "transit_status": None,
            "credit_amount": 0,
            "admin_feedback": "",
            "shipping_details": None,
            "created_at": now,
            "updated_at": now,
        })
        logger.info("Exchange request %s created by %s", created.id, actor.id)
        return created

    def list_my_requests(self, actor: Actor) -> list[ExchangeRequest]:
        self._require_actor(actor)
        return self.store.list_by_owner(actor.id)

    def get_request(self, actor: Actor, request_id: str) -> ExchangeRequest:
        self._require_actor(actor)
        exchange = self.store.get(request_id)
        if not actor.is_admin and exchange.owner_id != actor.id:
            raise ForbiddenError("Not authorized to access this exchange request")
        return exchange

    def update_request(self, actor: Actor, request_id: str, request: UpdateExchangeRequest) -> ExchangeRequest:
        exchange = self._load_owned(actor, request_id)
        if exchange.status != ExchangeStatus.PENDING:
            raise ConflictError("Only pending exchange requests can be edited")

        fields = request.model_dump(exclude_unset=True)
        blanked = [f for f in REQUIRED_ITEM_FIELDS if f in fields and not (fields[f] or "").strip()]
        if blanked:
            raise ValidationError(f"Required fields cannot be empty: {', '.join(blanked)}")
        if fields.get("images") is None:
            fields.pop("images", None)
        if not fields:
            return exchange
        return self.store.update(request_id, fields)

    def cancel_request(self, actor: Actor, request_id: str) -> None:
        exchange = self._load_owned(actor, request_id)
        if exchange.status != ExchangeStatus.PENDING:
            raise ConflictError("Cannot cancel exchange request once it has been processed")
        self.store.delete(request_id)
        logger.info("Exchange request %s cancelled by %s", request_id, actor.id)

    def submit_shipping(self, actor: Actor, request_id: str, request: SubmitShippingRequest) -> ExchangeRequest:
        if not (request.carrier_name or "").strip() or not (request.tracking_number or "").strip() \
                or request.shipping_date is None:
            raise ValidationError("Missing required shipping details")

        exchange = self._load_owned(actor, request_id)
        if exchange.status != ExchangeStatus.APPROVED:
            raise ConflictError("Can only add shipping details to approved exchange requests")

        shipping_details = {
            "carrier_name": request.carrier_name,
            "tracking_number": request.tracking_number,
            "shipping_date": request.shipping_date,
            "address": request.address or "",
            "notes": request.notes or "",
            "submitted_at": datetime.now(timezone.utc),
        }
        updated = self.store.update(request_id, {
            "shipping_details": shipping_details,
            "transit_status": TransitStatus.SHIPPING,
        })
        logger.info("Shipping details submitted for exchange %s", request_id)
        return updated

    def list_my_credit_history(self, actor: Actor, limit: Optional[int] = 10) -> list[CreditHistoryEntry]:
        self._require_actor(actor)
        return self.credit_history.list_entries(owner_id=actor.id, limit=limit)

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def list_all_requests(self, actor: Actor, limit: Optional[int] = 100) -> list[ExchangeRequest]:
        self._require_admin(actor)
        return self.store.list_all(limit=limit)

    def set_status(self, actor: Actor, request_id: str, request: StatusUpdateRequest) -> ExchangeRequest:
        self._require_admin(actor)
        target = request.status
        if target == ExchangeStatus.PENDING:
            raise ValidationError('Invalid status value. Must be "approved", "declined" or "completed"')

        exchange = self.store.get(request_id)
        self._check_status_transition(exchange, target)

        updates: dict = {
            "status": target,
            "admin_feedback": append_feedback(exchange.admin_feedback, request.admin_feedback),
        }

        if target == ExchangeStatus.APPROVED:
            if not request.warehouse_id:
                raise ValidationError("Warehouse selection is required for approval")
            warehouse = self.warehouses.get(request.warehouse_id)
            updates["warehouse_id"] = warehouse.id
            updates["warehouse_info"] = warehouse.snapshot().model_dump()

        if target == ExchangeStatus.COMPLETED:
            if not exchange.has_credit():
                raise ConflictError("Cannot complete exchange request without assigning credit")
            updates["transit_status"] = TransitStatus.COMPLETED

        updated = self.store.update(request_id, updates)
        logger.info(
            "Exchange %s status %s -> %s by %s",
            request_id, exchange.status.value, target.value, actor.id,
        )

        if target == ExchangeStatus.APPROVED:
            self._notify(NotificationKind.EXCHANGE_APPROVED, updated)
        return updated

    def set_transit(self, actor: Actor, request_id: str, request: TransitUpdateRequest) -> ExchangeRequest:
        self._require_admin(actor)
        target = request.transit_status
        exchange = self.store.get(request_id)

        if exchange.status != ExchangeStatus.APPROVED:
            raise ConflictError("Can only update transit status for approved exchange requests")

        if target in (TransitStatus.SHIPPING, TransitStatus.RECEIVED) and exchange.shipping_details is None:
            raise ValidationError(f"Cannot mark as {target.value} without shipping details")

        if exchange.transit_status not in TRANSIT_PREDECESSORS[target]:
            raise ConflictError(
                f"Cannot move transit status from {exchange.transit_status.value} to {target.value}"
            )

        if target == TransitStatus.COMPLETED and not exchange.has_credit():
            raise ConflictError("Cannot complete exchange without assigning credit")

        updates: dict = {
            "transit_status": target,
            "admin_feedback": append_feedback(exchange.admin_feedback, request.admin_note),
        }
        if target == TransitStatus.COMPLETED:
            updates["status"] = ExchangeStatus.COMPLETED

        updated = self.store.update(request_id, updates)
        logger.info(
            "Exchange %s transit %s -> %s by %s",
            request_id,
            exchange.transit_status.value if exchange.transit_status else None,
            target.value,
            actor.id,
        )

        if target == TransitStatus.RECEIVED:
            self._notify(NotificationKind.ITEM_RECEIVED, updated)
        return updated

    def assign_credit(self, actor: Actor, request_id: str, request: AssignCreditRequest) -> AssignCreditResponse:
        self._require_admin(actor)
        amount = self._validate_credit_amount(request.credit_amount)

        exchange = self.store.get(request_id)
        if exchange.status != ExchangeStatus.APPROVED or exchange.transit_status != TransitStatus.RECEIVED:
            raise ConflictError("Credit can only be assigned to approved and received exchange requests")
        if self.guard_duplicate_credit and exchange.credit_already_granted():
            raise ConflictError("Credit has already been assigned to this exchange request")
        if not exchange.owner_email:
            raise ValidationError("Exchange request has no owner email to match a ledger customer")

        try:
            customer = self.ledger.find_customer_by_email(exchange.owner_email)
        except CustomerNotFoundError:
            raise NotFoundError("Customer not found in ledger")
        except LedgerError as e:
            logger.error("Ledger customer lookup failed for exchange %s: %s", request_id, e)
            raise ExternalServiceError("Failed to find customer in ledger") from e

        ledger_success = False
        total_loyalty_points: Optional[int] = None
        try:
            total_loyalty_points = self.ledger.add_points(customer.id, amount)
            ledger_success = True
        except LedgerError as e:
            # Keep the grant on record so the admin's intent is not lost.
            logger.error(
                "Ledger write failed for exchange %s (customer %s, %s points): %s",
                request_id, customer.id, amount, e,
            )

        now = datetime.now(timezone.utc)
        try:
            updated = self.store.update(request_id, {
                "credit_amount": amount,
                "total_loyalty_points": total_loyalty_points,
                "credit_currency": self.currency,
                "credit_assigned_at": now,
                "credit_assigned_by": actor.id,
                "ledger_customer_id": customer.id,
                "ledger_success": ledger_success,
                "admin_feedback": append_feedback(exchange.admin_feedback, request.feedback),
            })
            entry = self.credit_history.record(
                owner_id=exchange.owner_id,
                exchange_request_id=request_id,
                amount=amount,
                currency=self.currency,
                assigned_by=actor.id,
                ledger_success=ledger_success,
                ledger_customer_id=customer.id,
                total_loyalty_points=total_loyalty_points,
            )
        except Exception:
            if ledger_success:
                logger.critical(
                    "Ledger credited but local bookkeeping failed; reconcile exchange %s "
                    "(customer %s, %s points, new balance %s)",
                    request_id, customer.id, amount, total_loyalty_points,
                )
            raise

        if ledger_success:
            logger.info(
                "Assigned %s points to exchange %s (customer %s, balance %s)",
                amount, request_id, customer.id, total_loyalty_points,
            )
            self._notify(NotificationKind.CREDIT_ASSIGNED, updated)
            message = "Loyalty points assigned successfully"
        else:
            message = "Credit recorded but the ledger update failed; reconciliation required"

        return AssignCreditResponse(
            request=updated,
            history_entry=entry,
            ledger_success=ledger_success,
            message=message,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_actor(self, actor: Optional[Actor]) -> None:
        if actor is None or not actor.id:
            raise ForbiddenError("Authentication required")

    def _require_admin(self, actor: Optional[Actor]) -> None:
        self._require_actor(actor)
        if not actor.is_admin:
            raise ForbiddenError("Admin access required")

    def _load_owned(self, actor: Actor, request_id: str) -> ExchangeRequest:
        self._require_actor(actor)
        exchange = self.store.get(request_id)
        if exchange.owner_id != actor.id:
            raise ForbiddenError("Not authorized to modify this exchange request")
        return exchange

    def _check_status_transition(self, exchange: ExchangeRequest, target: ExchangeStatus) -> None:
        if exchange.is_terminal() or target not in STATUS_TRANSITIONS.get(exchange.status, set()):
            raise ConflictError(
                f"Cannot change exchange request {exchange.id} from "
                f"'{exchange.status.value}' to '{target.value}'"
            )

    def _validate_credit_amount(self, value) -> int:
        if isinstance(value, bool) or not isinstance(value, (int, float)) \
                or (isinstance(value, float) and not math.isfinite(value)):
            raise ValidationError("Invalid loyalty points amount. Please provide a positive whole number.")
        if value <= 0 or int(value) != value:
            raise ValidationError("Invalid loyalty points amount. Please provide a positive whole number.")
        return int(value)

    def _notify(self, kind: NotificationKind, exchange: ExchangeRequest) -> None:
        if not exchange.owner_email:
            logger.warning("No owner email on exchange %s; skipping %s notification", exchange.id, kind.value)
            return
        self.notifications.publish(NotificationIntent(
            kind=kind,
            recipient=exchange.owner_email,
            context=exchange.model_dump(mode="json"),
        ))
