import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy import select, text
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db import get_db
from ..exceptions import CreatorHubError, error_body, status_code_for
from ..auth import require_admin
from ..models import User, WebhookEvent
from ..pricing import PriceBook, get_price_book
from ..services.thrivecart_events import ThriveCartEventProcessor, parse_body

router = APIRouter()
logger = logging.getLogger(__name__)


async def _handle(request: Request, db: Session, price_book: PriceBook, settings: Settings, topup: bool) -> JSONResponse:
    """Run one delivery; nothing raises past here so ThriveCart never loops on retries."""
    raw = await request.body()
    processor = ThriveCartEventProcessor(db, price_book, settings)
    try:
        payload = parse_body(raw, request.headers.get("content-type"))
        customer = payload.get("customer") if isinstance(payload.get("customer"), dict) else {}
        logger.info(
            f"Received ThriveCart {'top-up' if topup else 'subscription'} webhook: "
            f"event={payload.get('event')} email={customer.get('email')}"
        )
        if topup:
            result = await processor.process_topup_event(payload)
        else:
            result = await processor.process_subscription_event(payload)
        return JSONResponse(content=jsonable_encoder(result))
    except CreatorHubError as e:
        return JSONResponse(status_code=status_code_for(e), content=jsonable_encoder(error_body(e)))
    except Exception as e:
        logger.exception(f"Unexpected error processing ThriveCart webhook: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": "Webhook processing failed"})


@router.post("/webhook")
async def thrivecart_webhook(
    request: Request,
    db: Session = Depends(get_db),
    price_book: PriceBook = Depends(get_price_book),
    settings: Settings = Depends(get_settings),
):
    """Subscription purchases, renewals, cancellations and refunds."""
    return await _handle(request, db, price_book, settings, topup=False)


@router.post("/top-up")
async def thrivecart_topup(
    request: Request,
    db: Session = Depends(get_db),
    price_book: PriceBook = Depends(get_price_book),
    settings: Settings = Depends(get_settings),
):
    """One-time credit packs."""
    return await _handle(request, db, price_book, settings, topup=True)


@router.get("/webhook")
def webhook_status(db: Session = Depends(get_db)):
    """ThriveCart pings the URL with GET/HEAD when the webhook is registered."""
    try:
        db.execute(text("SELECT 1"))
        connected = True
    except Exception as e:
        logger.warning(f"Webhook status check could not reach the database: {e}")
        connected = False
    return {"status": "active", "timestamp": datetime.now(timezone.utc).isoformat(), "databaseConnected": connected}


@router.head("/webhook")
def webhook_head():
    return Response(status_code=200)


@router.get("/events/{event_key}/status")
def get_event_status(event_key: str, db: Session = Depends(get_db), _admin: User = Depends(require_admin)):
    """Get processing status of a ThriveCart delivery."""
    event_log = db.execute(
        select(WebhookEvent).where(WebhookEvent.event_key == event_key)
    ).scalar_one_or_none()

    if not event_log:
        raise HTTPException(status_code=404, detail="Event not found")

    return {
        "event_key": event_key,
        "event_type": event_log.event_type,
        "processed": event_log.processed,
        "processing_attempts": event_log.processing_attempts,
        "error_message": event_log.error_message,
        "processed_at": event_log.processed_at,
        "created_at": event_log.created_at,
    }
