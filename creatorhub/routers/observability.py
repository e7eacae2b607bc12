from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session
from sqlalchemy import func, select, text
from datetime import datetime, timedelta, timezone
import time
import psutil
import logging

from ..db import get_db, get_redis
from ..models import CreditTransaction, UsageLog, User, WebhookEvent

router = APIRouter()
logger = logging.getLogger(__name__)

# Attempts after which a webhook delivery is reported as failed
FAILED_EVENT_ATTEMPTS = 3


def _now() -> datetime:
    return datetime.now(timezone.utc)


@router.get("/health")
async def basic_health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "timestamp": _now().isoformat()}


@router.get("/readyz")
async def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness check: the database must answer, Redis is reported but optional.
    """
    checks = {}
    all_healthy = True

    try:
        start_time = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = int((time.time() - start_time) * 1000)
        checks["database"] = {"status": "healthy", "latency_ms": latency_ms}
    except Exception as e:
        logger.error(f"Readiness database check failed: {e}")
        checks["database"] = {"status": "unhealthy", "error": str(e)}
        all_healthy = False

    try:
        redis_client = get_redis()
        start_time = time.time()
        redis_client.ping()
        latency_ms = int((time.time() - start_time) * 1000)
        checks["redis"] = {"status": "healthy", "latency_ms": latency_ms}
    except Exception as e:
        logger.warning(f"Readiness redis check failed: {e}")
        checks["redis"] = {"status": "degraded", "error": str(e)}

    response_data = {
        "status": "ready" if all_healthy else "not_ready",
        "checks": checks,
        "timestamp": _now().isoformat(),
    }
    if not all_healthy:
        raise HTTPException(status_code=503, detail=response_data)
    return response_data


@router.get("/livez")
async def liveness_check():
    """
    Liveness check. Fails only on exhausted memory or disk.
    """
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage('/')
    disk_percent = (disk.used / disk.total) * 100
    problems = []
    if memory.percent > 95:
        problems.append(f"Critical memory usage: {memory.percent}%")
    if disk_percent > 95:
        problems.append(f"Critical disk usage: {disk_percent:.1f}%")
    if problems:
        logger.critical(f"Liveness check failed: {'; '.join(problems)}")
        raise HTTPException(status_code=503, detail=f"Application not alive: {'; '.join(problems)}")

    return {
        "status": "alive",
        "memory_percent": memory.percent,
        "disk_percent": round(disk_percent, 1),
        "timestamp": _now().isoformat(),
    }


def _count(db: Session, stmt) -> int:
    return db.execute(stmt).scalar_one() or 0


@router.get("/metrics")
async def prometheus_metrics(db: Session = Depends(get_db)):
    """
    Prometheus-style ledger metrics.
    """
    since = _now() - timedelta(hours=24)
    try:
        total_accounts = _count(db, select(func.count(User.id)))
        paid_accounts = _count(db, select(func.count(User.id)).where(User.subscription_tier.in_(("tier1", "tier2"))))
        usage_calls_24h = _count(db, select(func.count(UsageLog.id)).where(UsageLog.created_at >= since))
        usage_cost_24h = db.execute(
            select(func.coalesce(func.sum(UsageLog.estimated_cost), 0)).where(UsageLog.created_at >= since)
        ).scalar_one()
        events_processed = _count(
            db, select(func.count(WebhookEvent.id)).where(WebhookEvent.processed.is_(True))
        )
        events_failed = _count(
            db,
            select(func.count(WebhookEvent.id)).where(
                WebhookEvent.processed.is_(False),
                WebhookEvent.processing_attempts >= FAILED_EVENT_ATTEMPTS,
            ),
        )
        coupon_redemptions = _count(
            db, select(func.count(CreditTransaction.id)).where(CreditTransaction.payment_method == "coupon")
        )
    except Exception as e:
        logger.error(f"Failed to generate metrics: {e}")
        raise HTTPException(status_code=500, detail="Metrics generation failed")

    memory = psutil.virtual_memory()

    metrics = f"""# HELP creatorhub_accounts_total Registered accounts
# TYPE creatorhub_accounts_total gauge
creatorhub_accounts_total {total_accounts}

# HELP creatorhub_paid_accounts Accounts on a paid tier
# TYPE creatorhub_paid_accounts gauge
creatorhub_paid_accounts {paid_accounts}

# HELP creatorhub_usage_calls_24h Chat and image calls in the last 24 hours
# TYPE creatorhub_usage_calls_24h gauge
creatorhub_usage_calls_24h {usage_calls_24h}

# HELP creatorhub_usage_cost_24h Estimated downstream cost in the last 24 hours
# TYPE creatorhub_usage_cost_24h gauge
creatorhub_usage_cost_24h {float(usage_cost_24h):.6f}

# HELP creatorhub_webhook_events_processed Payment webhook events applied
# TYPE creatorhub_webhook_events_processed counter
creatorhub_webhook_events_processed {events_processed}

# HELP creatorhub_webhook_events_failed Payment webhook events that keep failing
# TYPE creatorhub_webhook_events_failed gauge
creatorhub_webhook_events_failed {events_failed}

# HELP creatorhub_coupon_redemptions_total Coupons redeemed
# TYPE creatorhub_coupon_redemptions_total counter
creatorhub_coupon_redemptions_total {coupon_redemptions}

# HELP creatorhub_memory_usage_percent Memory usage percentage
# TYPE creatorhub_memory_usage_percent gauge
creatorhub_memory_usage_percent {memory.percent}
"""
    return Response(content=metrics, media_type="text/plain")
