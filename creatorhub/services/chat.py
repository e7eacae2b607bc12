"""One conversational turn: thread bookkeeping, the inference call, cost metering."""
import logging
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import Settings
from ..db import atomic
from ..exceptions import ExternalServiceError, InsufficientCreditsError, NotFoundError
from ..llm.providers import ChatProvider
from ..models import ChatThread, Message, UsageLog, User
from ..pricing import PriceBook, estimate_tokens
from ..schemas import ChatRequest
from .credits import apply_credit_delta, get_balance
from .projects import resolve_project

logger = logging.getLogger(__name__)

PLACEHOLDER_REPLY = (
    "Sorry, the assistant is unavailable right now. Your message was saved; please try again in a moment."
)


def get_or_create_thread(db: Session, request: ChatRequest, user: User, project, model: str) -> ChatThread:
    if request.threadId:
        thread = db.get(ChatThread, request.threadId)
        if thread is None or thread.user_id != user.id:
            raise NotFoundError("thread", "Chat thread not found")
        return thread

    thread = ChatThread(
        user_id=user.id,
        project_id=project.id if project else None,
        title=request.message[:50],
        model=model,
    )
    db.add(thread)
    db.flush()
    logger.info(f"New chat thread {thread.id} for user {user.id}")
    return thread


def load_history(db: Session, thread: ChatThread) -> List[Dict[str, str]]:
    rows = db.execute(
        select(Message.role, Message.content)
        .where(Message.thread_id == thread.id)
        .order_by(Message.created_at)
    ).all()
    return [{"role": role, "content": content} for role, content in rows]


async def handle_chat_turn(
    db: Session,
    request: ChatRequest,
    provider: ChatProvider,
    price_book: PriceBook,
    settings: Settings,
) -> Dict[str, Any]:
    user = db.get(User, request.userId)
    if user is None:
        raise NotFoundError("user", "User not found")
    project = resolve_project(db, request.projectSlug, user)
    model = request.model or price_book.default_chat_model

    if settings.chat_billing_enabled:
        balance = get_balance(db, user.id)
        floor = price_book.chat_cost(model, estimate_tokens(request.message), 0)
        if balance <= 0 or balance < floor:
            raise InsufficientCreditsError(required=floor, available=balance, user_id=str(user.id))

    # The user's message is kept even when inference fails below
    with atomic(db):
        thread = get_or_create_thread(db, request, user, project, model)
        history = load_history(db, thread)
        db.add(Message(thread_id=thread.id, role="user", content=request.message, model=model))
    thread_id = thread.id

    payload = {
        "message": request.message,
        "userId": str(user.id),
        "projectId": str(project.id) if project else None,
        "projectSlug": request.projectSlug,
        "model": model,
        "threadId": str(thread_id),
        "fileUrls": [f.model_dump() for f in request.fileUrls],
        "systemPrompt": project.system_prompt if project and project.system_prompt else "",
        "conversationHistory": history,
    }

    degraded = False
    try:
        reply = await provider.complete(payload)
    except ExternalServiceError as e:
        logger.warning(f"Chat inference failed for thread {thread_id}, sending placeholder: {e.message}")
        reply = PLACEHOLDER_REPLY
        degraded = True

    input_tokens = estimate_tokens(request.message)
    output_tokens = 0 if degraded else estimate_tokens(reply)
    billable = getattr(provider, "billable", True)
    cost = price_book.chat_cost(model, input_tokens, output_tokens) if billable else Decimal("0")

    with atomic(db):
        db.add(Message(
            thread_id=thread_id,
            role="assistant",
            content=reply,
            model=model,
            tokens_used=input_tokens + output_tokens,
        ))
        db.add(UsageLog(
            user_id=user.id,
            model=model,
            tokens_input=input_tokens,
            tokens_output=output_tokens,
            estimated_cost=cost,
            project_id=project.id if project else None,
            metadata_={"type": "chat", "thread_id": str(thread_id), "degraded": degraded},
        ))
        # A placeholder reply is metered but never charged
        if settings.chat_billing_enabled and cost > 0 and not degraded:
            apply_credit_delta(db, user.id, -cost)

    logger.info(f"Chat turn {thread_id}: {input_tokens} in, {output_tokens} out, cost {cost:.6f}")
    return {
        "success": True,
        "reply": reply,
        "threadId": thread_id,
        "tokensUsed": input_tokens + output_tokens,
        "cost": cost,
    }
