"""
Dépendances FastAPI communes aux routes de la chasse.

Ordre des préconditions (aucune ne touche au store) :
  1. configuration serveur présente   → 500 sinon
  2. origine dans la liste autorisée  → 403 sinon, quelle que soit l'authentification
  3. identité résolue par le fournisseur → 401 (pas de session) / 400 (pas de nom d'équipe)
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from cluetrack.config import settings
from cluetrack.services.identity import IdentityProvider, NoSession, NoUsername

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": code, "message": message})


def require_configuration() -> None:
    if not settings.is_configured():
        logger.error("Configuration serveur incomplète (étapes, clé secrète ou base de données)")
        raise _error(500, "server_configuration_error", "Server configuration error")


def request_origin(request: Request) -> str:
    """Origine déclarée par le navigateur, sinon celle de l'URL appelée."""
    origin = request.headers.get("origin")
    if origin:
        return origin
    return f"{request.url.scheme}://{request.url.netloc}"


def verify_origin(request: Request, _: None = Depends(require_configuration)) -> str:
    origin = request_origin(request)
    if origin not in settings.ALLOWED_ORIGINS:
        logger.warning("Origine refusée : %s (%s %s)", origin, request.method, request.url.path)
        raise _error(403, "invalid_origin", "Invalid origin")
    return origin


def get_identity_provider() -> IdentityProvider:
    return IdentityProvider(settings.SECRET_KEY, settings.ALGORITHM)


def get_team_name(
    _: str = Depends(verify_origin),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> str:
    """Nom d'équipe de l'appelant. Toutes les routes de progression en dépendent."""
    token = credentials.credentials if credentials else None
    try:
        return identity.resolve_team_name(token)
    except NoSession:
        raise _error(401, "unauthorized", "Unauthorized")
    except NoUsername:
        raise _error(400, "username_not_found", "Username not found for user")
