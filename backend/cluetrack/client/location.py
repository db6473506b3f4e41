"""
Acquisition de la position de l'appareil avec timeout et réutilisation d'une position récente.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

LOCATION_TIMEOUT_S = 10.0
LOCATION_MAX_AGE_S = 300.0


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None   # mètres


class LocationUnavailable(Exception):
    """Position indisponible : refus de permission, capteur en erreur ou timeout."""


class CachedGeolocator:
    """
    Enveloppe un géolocalisateur d'appareil (objet exposant `async current_position()`).

    Une position de moins de `maximum_age` secondes est réutilisée sans interroger le capteur ;
    sinon l'acquisition est bornée par `timeout`.
    """

    def __init__(
        self,
        geolocator,
        timeout: float = LOCATION_TIMEOUT_S,
        maximum_age: float = LOCATION_MAX_AGE_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._geolocator = geolocator
        self.timeout = timeout
        self.maximum_age = maximum_age
        self._clock = clock
        self._last: Optional[Position] = None
        self._last_at: float = 0.0

    async def current_position(self) -> Position:
        now = self._clock()
        if self._last is not None and now - self._last_at <= self.maximum_age:
            return self._last

        try:
            position = await asyncio.wait_for(self._geolocator.current_position(), self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Géolocalisation : pas de position après %.0f s", self.timeout)
            raise LocationUnavailable("Location request timed out") from exc
        except LocationUnavailable:
            raise
        except Exception as exc:
            logger.warning("Géolocalisation en erreur : %s", exc)
            raise LocationUnavailable(str(exc)) from exc

        self._last = position
        self._last_at = self._clock()
        return position
