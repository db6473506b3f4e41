"""
Configuration centrale de l'application via variables d'environnement.
Charger depuis un fichier .env en développement.

Les étapes de la chasse sont décrites par la variable STAGES (liste JSON) :
    STAGES='[{"name": "Bibliothèque", "qr_value": "https://...", "latitude": 13.08, "longitude": 80.27}]'
"""

from typing import List, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

TOTAL_STAGES_DEFAULT = 7


class StageTarget(BaseModel):
    """Cible d'une étape : nom affiché, valeur QR attendue, coordonnées optionnelles."""
    name: str
    qr_value: str
    latitude: float = 0.0
    longitude: float = 0.0
    tolerance: Optional[float] = None   # mètres ; None = tolérance par défaut
    clue: Optional[str] = None          # Texte de l'indice menant à cette étape

    @property
    def has_coordinates(self) -> bool:
        # (0, 0) est la sentinelle « pas de contrôle de proximité »
        return not (self.latitude == 0 and self.longitude == 0)


def _placeholder_stages() -> List[StageTarget]:
    return [
        StageTarget(name=f"Location {i}", qr_value=f"CLUE-{i}")
        for i in range(1, TOTAL_STAGES_DEFAULT + 1)
    ]


class Settings(BaseSettings):
    # Base de données
    DATABASE_URL: str = "sqlite:///./cluetrack.db"

    # Jetons de session émis par le fournisseur d'identité
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"

    # Origines autorisées (production + développement local)
    ALLOWED_ORIGINS: List[str] = [
        "https://www.treasurehunt.ospcvitc.club",
        "http://localhost:3000",
        "https://localhost:3000",
    ]

    # Chasse au trésor
    STAGES: List[StageTarget] = _placeholder_stages()
    DEFAULT_TOLERANCE_M: float = 50.0
    ADMIN_TEAMS: List[str] = []

    # Client de scan
    CLIENT_TIMEOUT_S: float = 10.0

    # Environnement
    ENV: str = "development"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def total_stages(self) -> int:
        return len(self.STAGES)

    def is_configured(self) -> bool:
        return bool(self.STAGES) and bool(self.SECRET_KEY) and bool(self.DATABASE_URL)


settings = Settings()
