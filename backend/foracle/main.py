import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .ai.router import router as ai_router
from .config import settings
from .database import close_db_pool, get_pool, init_db_pool
from .dependencies import init_services, reset_services
from .vectors.router import router as vectors_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    await init_db_pool()
    init_services(settings, get_pool())
    yield
    reset_services()
    await close_db_pool()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials="*" not in origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ai_router)
app.include_router(vectors_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
