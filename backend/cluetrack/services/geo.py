"""
Calcul de distance orthodromique entre deux coordonnées GPS.
Utilisé pour vérifier la présence physique d'une équipe près d'une étape.
"""

from math import atan2, cos, radians, sin, sqrt
from typing import Optional

EARTH_RADIUS_M = 6_371_000.0  # Rayon terrestre moyen (sphère)


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Retourne la distance en mètres entre deux points (degrés décimaux), formule de haversine.

    Les entrées NaN/infinies ne sont pas gérées : c'est à l'appelant de fournir des valeurs finies.
    """
    phi1, phi2 = radians(lat1), radians(lat2)
    d_phi = radians(lat2 - lat1)
    d_lambda = radians(lon2 - lon1)

    a = sin(d_phi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(d_lambda / 2) ** 2
    # Les arrondis flottants peuvent pousser a légèrement hors de [0, 1]
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_M * 2 * atan2(sqrt(a), sqrt(1 - a))


def effective_tolerance(
    configured: Optional[float],
    default: float,
    qr_tolerance: Optional[float] = None,
) -> float:
    """
    Tolérance de proximité retenue pour une étape, en mètres.

    La valeur configurée côté serveur (sinon la valeur par défaut) fait foi ;
    une tolérance encodée dans le QR peut seulement la resserrer, jamais l'élargir.
    """
    tolerance = configured if configured is not None else default
    if qr_tolerance is not None and qr_tolerance > 0:
        return min(tolerance, qr_tolerance)
    return tolerance
