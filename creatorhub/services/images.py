"""Image generation metering.

The estimate is reserved from the balance before the generator is called, and
settled against what was actually produced afterwards:

    reserve(estimate) -> call generator -> save images -> refund(estimate - actual)

Any failure between reserve and settle hands the whole reservation back, so a
failed request leaves the balance where it started.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings
from ..db import atomic
from ..exceptions import ExternalServiceError, NotFoundError
from ..llm.providers import ImageProvider
from ..models import ChatThread, GeneratedImage, Project, UsageLog, User
from ..pricing import DEFAULT_IMAGE_MODEL, PriceBook
from ..schemas import ImageRequest
from .credits import apply_credit_delta, debit_credits
from .projects import ensure_project_access, resolve_project

logger = logging.getLogger(__name__)

_URL_KEYS = ("imageUrls", "image_urls", "images", "urls")
_SINGLE_URL_KEYS = ("imageUrl", "image_url", "url")
_TEXT_KEYS = ("reply", "output", "text", "message")


@dataclass
class GeneratorOutcome:
    urls: List[str] = field(default_factory=list)
    text: Optional[str] = None
    reported_cost: Optional[Decimal] = None
    reported_count: Optional[int] = None
    dropped: int = 0


def _is_url(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower().startswith("http")


def _in_band_error(text: str) -> bool:
    return text.strip().lower().startswith("error")


def _collect_urls(items: List[Any], outcome: GeneratorOutcome) -> None:
    for item in items:
        if isinstance(item, dict):
            item = next((item[k] for k in _SINGLE_URL_KEYS if k in item), None)
        if _is_url(item):
            outcome.urls.append(item.strip())
        else:
            outcome.dropped += 1


def _parse_usage(usage: Any, outcome: GeneratorOutcome) -> None:
    if not isinstance(usage, dict):
        return
    cost = usage.get("cost")
    count = usage.get("images", usage.get("num_images"))
    try:
        if cost is not None:
            outcome.reported_cost = Decimal(str(cost))
        if count is not None:
            outcome.reported_count = int(count)
    except (ArithmeticError, ValueError, TypeError):
        logger.warning(f"Ignoring malformed usage block from image generator: {usage!r}")
        outcome.reported_cost = None
        outcome.reported_count = None


def interpret_generator_response(data: Any) -> GeneratorOutcome:
    """Tell an image result from a clarification question by the payload's shape."""
    outcome = GeneratorOutcome()

    # n8n wraps single results in a one-item list
    if isinstance(data, list) and len(data) == 1 and isinstance(data[0], dict) and not any(
        k in data[0] for k in _SINGLE_URL_KEYS
    ):
        data = data[0]

    if isinstance(data, list):
        _collect_urls(data, outcome)
    elif isinstance(data, str):
        if _is_url(data):
            outcome.urls.append(data.strip())
        elif _in_band_error(data):
            raise ExternalServiceError("n8n-image", data.strip()[:500])
        elif data.strip():
            outcome.text = data.strip()
    elif isinstance(data, dict):
        if data.get("error"):
            raise ExternalServiceError("n8n-image", str(data["error"])[:500])
        if data.get("success") is False:
            raise ExternalServiceError("n8n-image", "generator reported failure")
        _parse_usage(data.get("usage"), outcome)
        for key in _URL_KEYS:
            if isinstance(data.get(key), list):
                _collect_urls(data[key], outcome)
                break
        else:
            single = next((data[k] for k in _SINGLE_URL_KEYS if k in data), None)
            if single is not None:
                _collect_urls([single], outcome)
            else:
                text = next((data[k] for k in _TEXT_KEYS if isinstance(data.get(k), str)), None)
                if text and _is_url(text):
                    outcome.urls.append(text.strip())
                elif text and _in_band_error(text):
                    raise ExternalServiceError("n8n-image", text.strip()[:500])
                elif text and text.strip():
                    outcome.text = text.strip()

    if not outcome.urls and outcome.text is None:
        raise ExternalServiceError("n8n-image", "unrecognized response shape")
    return outcome


def _resolve_project(db: Session, request: ImageRequest, user: User) -> Optional[Project]:
    if request.projectSlug:
        return resolve_project(db, request.projectSlug, user)
    if request.projectId:
        project = db.get(Project, request.projectId)
        if project is None:
            raise NotFoundError("project", "Project not found")
        ensure_project_access(project, user)
        return project
    return None


def _release(db: Session, user_id, amount: Decimal) -> Decimal:
    with atomic(db):
        return apply_credit_delta(db, user_id, amount)


def settle_cost(outcome: GeneratorOutcome, saved: int, unit_price: Decimal) -> Decimal:
    """Bill for the images actually kept, preferring the generator's own figure."""
    if outcome.reported_cost is not None:
        reported_count = outcome.reported_count or len(outcome.urls)
        if reported_count and saved < reported_count:
            return outcome.reported_cost * saved / reported_count
        return outcome.reported_cost
    return unit_price * saved


async def generate_images(
    db: Session,
    request: ImageRequest,
    provider: ImageProvider,
    price_book: PriceBook,
    settings: Settings,
) -> Dict[str, Any]:
    user = db.get(User, request.userId)
    if user is None:
        raise NotFoundError("user", "User not found")
    project = _resolve_project(db, request, user)
    if request.threadId:
        thread = db.get(ChatThread, request.threadId)
        if thread is None or thread.user_id != user.id:
            raise NotFoundError("thread", "Chat thread not found")

    model = request.model or DEFAULT_IMAGE_MODEL
    unit_price = price_book.image_unit_price(model, request.quality)
    estimate = unit_price * request.numImages

    # Raises InsufficientCreditsError before the generator is ever called
    with atomic(db):
        debit_credits(db, user.id, estimate)
    logger.info(f"Reserved {estimate} for {request.numImages} {model}/{request.quality} images for user {user.id}")

    payload = {
        "message": request.message,
        "userId": str(user.id),
        "projectId": str(project.id) if project else None,
        "projectSlug": request.projectSlug,
        "threadId": str(request.threadId) if request.threadId else None,
        "model": model,
        "quality": request.quality,
        "numImages": request.numImages,
        "imageSize": request.imageSize,
    }

    try:
        outcome = interpret_generator_response(await provider.generate(payload))
    except Exception:
        _release(db, user.id, estimate)
        raise

    if outcome.text is not None and not outcome.urls:
        remaining = _release(db, user.id, estimate)
        logger.info(f"Image generator asked for clarification for user {user.id}; nothing billed")
        return {
            "success": True,
            "isTextResponse": True,
            "reply": outcome.text,
            "cost": Decimal("0"),
            "remainingCredits": remaining,
        }

    saved: List[str] = []
    try:
        with atomic(db):
            for url in outcome.urls:
                try:
                    with db.begin_nested():
                        db.add(GeneratedImage(
                            user_id=user.id,
                            project_id=project.id if project else None,
                            thread_id=request.threadId,
                            prompt=request.message,
                            image_url=url,
                            model=model,
                            quality=request.quality,
                            size=request.imageSize,
                        ))
                    saved.append(url)
                except SQLAlchemyError as e:
                    logger.warning(f"Failed to save generated image {url}: {e}")

            if not saved:
                raise ExternalServiceError("image-storage", "no generated image could be saved")

            # Never bill past what was reserved
            actual = min(settle_cost(outcome, len(saved), unit_price), estimate)
            remaining = apply_credit_delta(db, user.id, estimate - actual)
            db.add(UsageLog(
                user_id=user.id,
                model=model,
                tokens_input=0,
                tokens_output=0,
                estimated_cost=actual,
                project_id=project.id if project else None,
                metadata_={
                    "type": "image_generation",
                    "quality": request.quality,
                    "size": request.imageSize,
                    "requested": request.numImages,
                    "generated": len(saved),
                },
            ))
    except Exception:
        _release(db, user.id, estimate)
        raise

    if len(saved) < request.numImages or outcome.dropped:
        logger.warning(
            f"Image generation for user {user.id} produced {len(saved)} of {request.numImages} images; "
            f"billing {actual}"
        )
    logger.info(f"Settled image generation for user {user.id}: {actual} charged, {remaining} remaining")
    return {
        "success": True,
        "isTextResponse": False,
        "imageUrls": saved,
        "cost": actual,
        "remainingCredits": remaining,
    }
