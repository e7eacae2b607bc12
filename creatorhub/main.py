import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .db import Base, engine
from .exceptions import CreatorHubError, creatorhub_exception_handler
from .middleware import RequestIDMiddleware
from .routers import admin, auth, chat, coupons, credits, images, observability, thrivecart, videos


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


setup_logging()

Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(CreatorHubError, creatorhub_exception_handler)

app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(credits.router, prefix="/credits", tags=["credits"])
app.include_router(coupons.router, prefix="/coupons", tags=["coupons"])
app.include_router(chat.router, prefix="/chat", tags=["chat"])
app.include_router(images.router, prefix="/images", tags=["images"])
app.include_router(thrivecart.router, prefix="/thrivecart", tags=["thrivecart"])
app.include_router(videos.router, prefix="/videos", tags=["videos"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


# Observability endpoints
app.include_router(observability.router, prefix="/ops", tags=["observability"])
