"""
Décodage du contenu texte d'un QR code scanné en descripteur de cible.

Trois formats acceptés, essayés dans l'ordre :
  1. JSON  {"url": ..., "latitude": ..., "longitude": ..., "tolerance": ...}
  2. URL avec paramètres ?lat=...&lng=...[&tolerance=...]
  3. URL http(s) nue (aucun contrôle de proximité)

Le parseur ne sait pas à quelle étape appartient le QR : la correspondance
étape ↔ QR se fait en comparant le texte brut à la valeur configurée de l'étape.
"""

import json
import math
from dataclasses import asdict, dataclass
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

DEFAULT_QR_TOLERANCE_M = 100.0


@dataclass(frozen=True)
class TargetDescriptor:
    url: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    tolerance: Optional[float] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> dict:
        return asdict(self)


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _qr_tolerance(value: Any) -> float:
    # Absente, illisible ou <= 0 : tolérance par défaut du QR
    tolerance = _to_float(value)
    if tolerance is None or tolerance <= 0:
        return DEFAULT_QR_TOLERANCE_M
    return tolerance


def _parse_structured(raw: str) -> Optional[TargetDescriptor]:
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    url = data.get("url")
    latitude = _to_float(data.get("latitude"))
    longitude = _to_float(data.get("longitude"))
    if not isinstance(url, str) or not url or latitude is None or longitude is None:
        return None

    tolerance = _qr_tolerance(data.get("tolerance"))
    return TargetDescriptor(
        url=url,
        latitude=latitude,
        longitude=longitude,
        tolerance=tolerance,
    )


def _parse_url_with_location(raw: str) -> Optional[TargetDescriptor]:
    try:
        parts = urlsplit(raw)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None

    params = parse_qs(parts.query)
    latitude = _to_float(params.get("lat", [None])[0])
    longitude = _to_float(params.get("lng", [None])[0])
    if latitude is None or longitude is None:
        return None

    tolerance = _qr_tolerance(params.get("tolerance", [None])[0])
    return TargetDescriptor(
        url=raw,
        latitude=latitude,
        longitude=longitude,
        tolerance=tolerance,
    )


def _parse_bare_url(raw: str) -> Optional[TargetDescriptor]:
    if not raw.startswith(("http://", "https://")):
        return None
    try:
        netloc = urlsplit(raw).netloc
    except ValueError:
        return None
    if not netloc:
        return None
    return TargetDescriptor(url=raw)


def parse_qr_payload(raw_text: Optional[str]) -> Optional[TargetDescriptor]:
    """Retourne le descripteur de cible du QR, ou None si le format n'est pas reconnu."""
    if not raw_text:
        return None
    raw = raw_text.strip()

    for parser in (_parse_structured, _parse_url_with_location, _parse_bare_url):
        descriptor = parser(raw)
        if descriptor is not None:
            return descriptor
    return None
