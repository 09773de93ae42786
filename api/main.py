"""FastAPI backend for the CardWise collection frontend.

Run from the project root:
    uvicorn api.main:app --reload --port 3000

Collection data lives in per-user JSON stores managed by collection_utils;
scan jobs call a local Ollama server through ollama_service.
"""

import sys
import os
import logging
from contextlib import asynccontextmanager

# Make root project importable from api/
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# Load .env from project root for local dev (no-op if file doesn't exist)
from dotenv import load_dotenv
load_dotenv(os.path.join(ROOT, ".env"))

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routers import basic, auth, cards, wishlist, scan, settings, seed
from config import CORS_ORIGINS, LOG_LEVEL, SEED_ON_STARTUP
from seed_data import seed_admin_user, seed_sample_cards

logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if SEED_ON_STARTUP:
        admin = seed_admin_user()
        logger.info(f"Admin user check result: {admin['message']}")
        cards_result = seed_sample_cards()
        logger.info(f"Sample cards check result: {cards_result['message']}")
    yield


app = FastAPI(title="CardWise API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    ]
    logger.info(f"Rejected {request.method} {request.url.path}: {errors}")
    return JSONResponse(status_code=400, content={"detail": errors})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"{type(exc).__name__} on {request.url.path} (500): {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


app.include_router(basic.router,                                tags=["basic"])
app.include_router(auth.router,     prefix="/api/auth",     tags=["auth"])
app.include_router(cards.router,    prefix="/api/cards",    tags=["cards"])
app.include_router(wishlist.router, prefix="/api/wishlist", tags=["wishlist"])
app.include_router(scan.router,     prefix="/api/scan",     tags=["scan"])
app.include_router(settings.router, prefix="/api/settings", tags=["settings"])
app.include_router(seed.router,     prefix="/api/seed",     tags=["seed"])
