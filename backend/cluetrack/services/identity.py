"""
Adaptateur vers le fournisseur d'identité externe.

Le fournisseur émet des jetons de session JWT signés (HS256) :
  - sub      : identifiant de session / utilisateur
  - username : nom d'équipe stable et unique

Deux échecs distincts : pas de session valide (NoSession → 401) et session
sans nom résolvable (NoUsername → 400).
"""

import logging
from typing import Optional

from jose import JWTError, jwt

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    """Erreur de résolution de l'identité d'une requête."""


class NoSession(IdentityError):
    pass


class NoUsername(IdentityError):
    pass


class IdentityProvider:
    """Résout un jeton de session en nom d'équipe."""

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self.secret_key = secret_key
        self.algorithm = algorithm

    def resolve_team_name(self, token: Optional[str]) -> str:
        if not token:
            raise NoSession("Unauthorized")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as exc:
            logger.info("Jeton de session rejeté : %s", exc)
            raise NoSession("Unauthorized") from exc

        if not payload.get("sub"):
            raise NoSession("Unauthorized")

        username = payload.get("username")
        if not isinstance(username, str) or not username.strip():
            raise NoUsername("Username not found for user")
        return username.strip()

    def issue_token(self, subject: str, username: Optional[str] = None) -> str:
        """Émet un jeton de session (outils d'administration et tests)."""
        claims = {"sub": subject}
        if username is not None:
            claims["username"] = username
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)
