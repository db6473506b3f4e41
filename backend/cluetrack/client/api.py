"""
Client HTTP asynchrone de l'API de progression (côté appareil de scan).

Chaque appel a un timeout imposé par l'appelant. Les lectures et remises à zéro
sont idempotentes et peuvent être rejouées ; un déverrouillage n'est jamais rejoué
automatiquement (un rejeu serait de toute façon refusé avec « already unlocked »).
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from cluetrack.config import settings

logger = logging.getLogger(__name__)


class ProgressApiError(Exception):
    """Erreur réseau, d'authentification ou serveur (5xx) lors d'un appel à l'API."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


@dataclass
class UnlockResult:
    accepted: bool
    stage: int
    progress: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    code: Optional[str] = None
    expected_stage: Optional[int] = None


class ProgressApiClient:
    """Accès à GET / PUT / DELETE /api/clues pour une équipe authentifiée."""

    def __init__(
        self,
        base_url: str,
        token: str,
        origin: str,
        timeout: float = settings.CLIENT_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}", "Origin": origin},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ProgressApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, json: Optional[dict] = None) -> httpx.Response:
        try:
            response = await self._client.request(method, "/api/clues", json=json)
        except httpx.HTTPError as exc:
            logger.warning("Appel %s /api/clues impossible : %s", method, exc)
            raise ProgressApiError(f"Network error: {exc}") from exc

        if response.status_code >= 500 or response.status_code in (401, 403):
            payload = _json_or_empty(response)
            raise ProgressApiError(
                f"Server returned HTTP {response.status_code}",
                status_code=response.status_code,
                payload=payload,
            )
        return response

    async def get_progress(self) -> Dict[str, Any]:
        response = await self._request("GET")
        _raise_for_client_error(response)
        return response.json()

    async def unlock(self, stage: int) -> UnlockResult:
        response = await self._request("PUT", json={"location": stage})
        payload = _json_or_empty(response)

        if response.status_code == 200 and payload.get("success"):
            return UnlockResult(accepted=True, stage=stage, progress=payload.get("progress"))
        if response.status_code == 400:
            return UnlockResult(
                accepted=False,
                stage=stage,
                error=payload.get("error"),
                code=payload.get("code"),
                expected_stage=payload.get("expectedClue"),
            )
        raise ProgressApiError(
            f"Unexpected HTTP {response.status_code} on unlock",
            status_code=response.status_code,
            payload=payload,
        )

    async def reset(self) -> Dict[str, Any]:
        response = await self._request("DELETE")
        _raise_for_client_error(response)
        return response.json()


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _raise_for_client_error(response: httpx.Response) -> None:
    if response.status_code >= 400:
        raise ProgressApiError(
            f"Server returned HTTP {response.status_code}",
            status_code=response.status_code,
            payload=_json_or_empty(response),
        )
