"""
Point d'entrée principal de l'API CluesTrack.
Démarrage : uvicorn cluetrack.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

import cluetrack.models  # noqa: F401 — enregistre tous les modèles dans Base.metadata avant create_all
from cluetrack.config import settings
from cluetrack.database import Base, engine
from cluetrack.routers import clues, stages

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie de l'application : crée les tables manquantes au démarrage."""
    Base.metadata.create_all(bind=engine)
    logger.info(
        "CluesTrack démarré (%s) — %d étapes configurées",
        settings.ENV, settings.total_stages,
    )
    yield


app = FastAPI(
    title="CluesTrack API",
    description="Progression séquentielle des équipes d'une chasse au trésor (QR + GPS)",
    version=VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS limité aux origines autorisées ; le contrôle d'origine des routes reste la référence.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)


app.include_router(stages.router)
app.include_router(clues.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Corps ou paramètres invalides → 400 (et non 422), comme les autres rejets du jeu."""
    if request.url.path == clues.router.prefix:
        error = clues.invalid_location_message()
    else:
        error = "Invalid request"
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": error,
            "code": "invalid_request",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(SQLAlchemyError)
async def store_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Store injoignable ou en erreur : 500 sans nouvelle tentative côté serveur."""
    logger.error("Erreur du store de progression : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "store_unavailable", "message": "Failed to retrieve or create team data"},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Intercepte toutes les exceptions non gérées pour garantir que la réponse 500
    passe bien par CORSMiddleware (qui injecte les headers CORS).
    """
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "Internal server error"},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API est opérationnelle."""
    return {"status": "ok", "service": "CluesTrack API", "version": VERSION}
