from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db import get_db
from ..llm.providers import ChatProvider, get_chat_provider
from ..pricing import PriceBook, get_price_book
from ..schemas import ChatRequest, ChatResponse
from ..services.chat import handle_chat_turn

router = APIRouter()


@router.post('', response_model=ChatResponse)
async def chat(
    payload: ChatRequest,
    db: Session = Depends(get_db),
    provider: ChatProvider = Depends(get_chat_provider),
    price_book: PriceBook = Depends(get_price_book),
    settings: Settings = Depends(get_settings),
):
    return await handle_chat_turn(db, payload, provider, price_book, settings)
