from typing import Dict, Any, Optional, Tuple
import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from urllib.parse import parse_qsl

from pydantic import TypeAdapter
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import Settings
from ..db import atomic
from ..exceptions import NotFoundError, ValidationFailedError, WebhookSecretError
from ..models import User, WebhookEvent
from ..pricing import PriceBook, Product
from ..schemas import (
    CANCELLATION_EVENTS, CHARGE_EVENTS, REFUND_EVENTS, ThriveCartEvent,
)
from .credits import apply_credit_delta, record_transaction, set_subscription

logger = logging.getLogger(__name__)

_event_adapter = TypeAdapter(ThriveCartEvent)


def parse_body(raw: bytes, content_type: Optional[str]) -> Dict[str, Any]:
    """Decode a JSON or form-encoded webhook body.

    A body that opens with ``{`` is JSON whatever the content type says.
    Form keys such as ``customer[email]`` are folded into nested dicts.
    """
    if not raw:
        return {}
    if (content_type and "json" in content_type) or raw.lstrip().startswith(b"{"):
        try:
            data = json.loads(raw)
        except ValueError:
            raise ValidationFailedError("Invalid JSON payload")
        if not isinstance(data, dict):
            raise ValidationFailedError("Webhook payload must be an object")
        return data

    data: Dict[str, Any] = {}
    for key, value in parse_qsl(raw.decode("utf-8"), keep_blank_values=True):
        if "[" in key and key.endswith("]"):
            parent, child = key[:-1].split("[", 1)
            nested = data.setdefault(parent, {})
            if isinstance(nested, dict):
                nested[child] = value
        else:
            data[key] = value
    return data


def _classify(event_name: str) -> str:
    if event_name in CHARGE_EVENTS:
        return "charge"
    if event_name in CANCELLATION_EVENTS:
        return "cancellation"
    if event_name in REFUND_EVENTS:
        return "refund"
    return "unknown"


def _first(*values) -> Optional[str]:
    for value in values:
        if value not in (None, ""):
            return str(value).strip()
    return None


def parse_event(
    payload: Dict[str, Any],
    product_field: str = "product_id",
    default_event: Optional[str] = None,
) -> ThriveCartEvent:
    """Normalize a raw ThriveCart payload into one of the closed event types.

    ``default_event`` names the event assumed when the payload carries none.
    """
    customer = payload.get("customer") if isinstance(payload.get("customer"), dict) else {}
    order = payload.get("order") if isinstance(payload.get("order"), dict) else {}
    product = payload.get("product") if isinstance(payload.get("product"), dict) else {}

    email = _first(customer.get("email"), payload.get("customer_email"), payload.get("email"))
    if product_field == "base_product":
        product_id = _first(payload.get("base_product"))
    else:
        product_id = _first(payload.get("product_id"), product.get("id"), payload.get("base_product"))

    if not email:
        raise ValidationFailedError("Missing email", field="email")
    if not product_id:
        raise ValidationFailedError("Missing product_id", field="product_id")

    event_name = _first(payload.get("event"), payload.get("event_type")) or default_event or ""
    return _event_adapter.validate_python({
        "kind": _classify(event_name),
        "event": event_name,
        "email": email.lower(),
        "product_id": product_id,
        "order_id": _first(order.get("id"), payload.get("order_id")),
        "invoice_id": _first(order.get("invoice_id"), payload.get("invoice_id")),
        "customer_name": _first(customer.get("name"), customer.get("first_name")),
    })


def derive_event_key(scope: str, event: ThriveCartEvent, payload: Dict[str, Any]) -> str:
    """Idempotency key for one delivery: order id + event type, or a payload digest."""
    if event.order_id:
        parts = ["thrivecart", scope, event.event, event.order_id]
        if event.invoice_id:
            parts.append(event.invoice_id)
        return ":".join(parts)
    canonical = {k: v for k, v in payload.items() if k != "thrivecart_secret"}
    digest = hashlib.sha256(json.dumps(canonical, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    return f"thrivecart:{scope}:{event.event}:sha256:{digest}"


class ThriveCartEventProcessor:
    """Apply ThriveCart payment events to the ledger with insert-first idempotency."""

    def __init__(self, db: Session, price_book: PriceBook, settings: Settings):
        self.db = db
        self.price_book = price_book
        self.settings = settings

    def verify_secret(self, payload: Dict[str, Any]) -> None:
        expected = self.settings.thrivecart_secret
        if not expected:
            return
        supplied = str(payload.get("thrivecart_secret") or "")
        if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
            raise WebhookSecretError()

    async def process_subscription_event(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.verify_secret(payload)
        # Checkout pings without an event name are first-time purchases
        event = parse_event(payload, default_event="order.success")
        product = self.price_book.subscription_product(event.product_id)
        if product is None:
            raise ValidationFailedError(f"Unknown product: {event.product_id}", field="product_id")

        if event.kind == "unknown":
            logger.info(f"Unhandled ThriveCart event: {event.event}")
            return {"success": True, "handled": False, "message": f"Event {event.event} received but not handled"}

        return self._run_once(
            derive_event_key("subscription", event, payload),
            event,
            payload,
            lambda: self._apply_subscription(event, product),
        )

    async def process_topup_event(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.verify_secret(payload)
        event = parse_event(payload, product_field="base_product")
        product = self.price_book.topup_product(event.product_id)
        if product is None:
            raise ValidationFailedError(f"Unknown product: {event.product_id}", field="product_id")

        if event.kind not in ("charge", "refund") or (event.kind == "charge" and event.event != "order.success"):
            logger.info(f"Unhandled ThriveCart top-up event: {event.event}")
            return {"success": True, "handled": False, "message": "Event not handled"}

        return self._run_once(
            derive_event_key("topup", event, payload),
            event,
            payload,
            lambda: self._apply_topup(event, product),
        )

    def _claim(self, event_key: str, event: ThriveCartEvent, payload: Dict[str, Any]) -> Tuple[WebhookEvent, bool]:
        """Insert the event key, or load the row a previous delivery left behind."""
        stored = {k: v for k, v in payload.items() if k != "thrivecart_secret"}
        try:
            event_log = WebhookEvent(
                event_key=event_key,
                source="thrivecart",
                event_type=event.event,
                event_data=stored,
                processed=False,
                processing_attempts=0,
            )
            self.db.add(event_log)
            self.db.commit()
            return event_log, False
        except IntegrityError:
            self.db.rollback()
            existing = self.db.execute(
                select(WebhookEvent).where(WebhookEvent.event_key == event_key)
            ).scalar_one()
            return existing, existing.processed

    def _run_once(self, event_key: str, event: ThriveCartEvent, payload: Dict[str, Any], apply) -> Dict[str, Any]:
        event_log, already_processed = self._claim(event_key, event, payload)
        if already_processed:
            logger.info(f"ThriveCart event {event_key} already processed")
            return {"success": True, "duplicate": True, "message": "Event already processed"}

        try:
            with atomic(self.db):
                # Flipping the flag first takes the row lock; a concurrent delivery
                # of the same key matches zero rows once this commits.
                claimed = self.db.execute(
                    update(WebhookEvent)
                    .where(WebhookEvent.id == event_log.id, WebhookEvent.processed.is_(False))
                    .values(
                        processed=True,
                        processed_at=datetime.now(timezone.utc),
                        processing_attempts=WebhookEvent.processing_attempts + 1,
                        error_message=None,
                    )
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount == 0:
                    return {"success": True, "duplicate": True, "message": "Event already processed"}
                result = apply()
        except Exception as e:
            self.db.execute(
                update(WebhookEvent)
                .where(WebhookEvent.id == event_log.id)
                .values(
                    processing_attempts=WebhookEvent.processing_attempts + 1,
                    error_message=str(e),
                )
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            logger.error(f"Failed to process ThriveCart event {event_key}: {e}")
            raise

        logger.info(f"Processed ThriveCart event {event_key} ({event.event})")
        return result

    def _resolve_user(self, event: ThriveCartEvent, provision: bool) -> User:
        user = self.db.execute(
            select(User).where(func.lower(User.email) == event.email)
        ).scalar_one_or_none()
        if user is not None:
            return user
        if not provision:
            raise NotFoundError("user", "User not found")

        user = User(
            email=event.email,
            name=event.customer_name or event.email.split("@")[0],
            credits=0,
            subscription_tier="free",
        )
        self.db.add(user)
        self.db.flush()
        logger.info(f"Provisioned account {user.id} for {event.email} from payment webhook")
        return user

    def _apply_subscription(self, event: ThriveCartEvent, product: Product) -> Dict[str, Any]:
        user = self._resolve_user(
            event, provision=self.settings.auto_provision_accounts and event.kind == "charge"
        )

        if event.kind == "charge":
            balance = apply_credit_delta(self.db, user.id, product.credits, tier=product.tier)
            if product.tier:
                set_subscription(self.db, user, product.tier, product.credits)
            record_transaction(
                self.db, user.id, product.credits, "purchase",
                payment_method="thrivecart",
                metadata={"order_id": event.order_id, "product_id": product.product_id, "event": event.event},
            )
            message = "Subscription activated" if event.event == "order.success" else "Subscription renewed"
            return {"success": True, "message": message, "credits": balance, "tier": user.subscription_tier}

        if event.kind == "cancellation":
            set_subscription(self.db, user, "free")
            message = "Subscription paused" if event.event.endswith("paused") else "Subscription cancelled"
            return {"success": True, "message": message, "tier": "free"}

        # refund
        balance = apply_credit_delta(self.db, user.id, -product.credits, tier="free")
        set_subscription(self.db, user, "free")
        record_transaction(
            self.db, user.id, -product.credits, "refund",
            payment_method="thrivecart",
            metadata={"order_id": event.order_id, "product_id": product.product_id},
        )
        return {"success": True, "message": "Refund processed", "credits": balance, "tier": "free"}

    def _apply_topup(self, event: ThriveCartEvent, product: Product) -> Dict[str, Any]:
        user = self._resolve_user(event, provision=False)

        if event.kind == "charge":
            balance = apply_credit_delta(self.db, user.id, product.credits)
            record_transaction(
                self.db, user.id, product.credits, "purchase",
                payment_method="thrivecart",
                metadata={"order_id": event.order_id, "product_id": product.product_id},
            )
            logger.info(f"Top-up successful: +{product.credits} for {event.email}")
            return {"success": True, "message": "Credits added", "credits": balance}

        balance = apply_credit_delta(self.db, user.id, -product.credits)
        record_transaction(
            self.db, user.id, -product.credits, "refund",
            payment_method="thrivecart",
            metadata={"order_id": event.order_id, "product_id": product.product_id},
        )
        logger.info(f"Refund processed: -{product.credits} for {event.email}")
        return {"success": True, "message": "Refund processed", "credits": balance}
