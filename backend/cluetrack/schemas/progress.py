"""
Schémas Pydantic pour la progression des équipes.
Endpoints : GET / PUT / POST / DELETE /api/clues

Les noms camelCase (nextClue, isNewTeam, ...) font partie du contrat avec le client web :
ils sont exposés via des alias, les attributs Python restent en snake_case.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ClueStatus(_ApiModel):
    """État d'une étape dans la progression d'une équipe."""
    location: int                       # Index de l'étape (1..N)
    unlocked: bool
    timestamp: Optional[datetime]       # None tant que l'étape est verrouillée


class ProgressSummary(_ApiModel):
    unlocked: int
    total: int
    percentage: int                     # round(100 * unlocked / total)
    next_clue: Optional[int] = Field(None, alias="nextClue")   # None = chasse terminée


class ProgressResponse(_ApiModel):
    """Réponse de GET /api/clues."""
    team_name: str
    clues: List[ClueStatus]
    progress: ProgressSummary
    last_updated: datetime = Field(alias="lastUpdated")
    is_new_team: bool = Field(alias="isNewTeam")


class UnlockRequest(BaseModel):
    """Corps de PUT /api/clues. Entier strict : ni chaîne, ni booléen, ni flottant."""
    location: StrictInt


class UnlockResponse(_ApiModel):
    """Réponse d'un déverrouillage accepté."""
    success: bool = True
    message: str
    location: int
    timestamp: datetime
    progress: ProgressSummary
    updated_clues: List[ClueStatus]
    was_updated: bool = Field(True, alias="wasUpdated")


class UnlockRejection(_ApiModel):
    """Corps d'une réponse 400 pour un déverrouillage refusé par les règles métier."""
    success: bool = False
    error: str
    code: str
    location: Optional[int] = None
    expected_clue: Optional[int] = Field(None, alias="expectedClue")


class ResetResponse(_ApiModel):
    success: bool = True
    message: str = "Team progress reset successfully"
    team_name: str
    reset_at: datetime


class StagePublic(_ApiModel):
    """Étape telle qu'exposée aux équipes (jamais la valeur QR attendue)."""
    index: int
    name: str
    latitude: Optional[float]           # None si coordonnées sentinelles (0, 0)
    longitude: Optional[float]
    tolerance: float                    # Tolérance effective en mètres
    unlocked: bool
    clue: Optional[str]                 # Révélé uniquement jusqu'à l'étape suivante


class StagesResponse(_ApiModel):
    team_name: str
    stages: List[StagePublic]
    next_clue: Optional[int] = Field(None, alias="nextClue")
