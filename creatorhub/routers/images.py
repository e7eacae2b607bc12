from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db import get_db
from ..llm.providers import ImageProvider, get_image_provider
from ..pricing import PriceBook, get_price_book
from ..schemas import ImageRequest, ImageResponse
from ..services.images import generate_images

router = APIRouter()


@router.post('/generate', response_model=ImageResponse, response_model_exclude_none=True)
async def generate(
    payload: ImageRequest,
    db: Session = Depends(get_db),
    provider: ImageProvider = Depends(get_image_provider),
    price_book: PriceBook = Depends(get_price_book),
    settings: Settings = Depends(get_settings),
):
    return await generate_images(db, payload, provider, price_book, settings)
