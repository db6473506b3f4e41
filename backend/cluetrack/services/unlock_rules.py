"""
Machine à états du déverrouillage des étapes.

État d'une équipe : k = nombre d'étapes contiguës déverrouillées depuis 1 (0 ≤ k ≤ N).
k = N est terminal (chasse terminée). Pour une demande sur l'étape s :
  - s hors de [1, N]  → INVALID_STAGE
  - s ≤ k             → ALREADY_UNLOCKED (aucune mutation)
  - s > k + 1         → OUT_OF_ORDER (étape attendue : k + 1)
  - s = k + 1         → accepté, k passe à k + 1

La même règle sert de rejet rapide (API, client de scan) et d'explication
après l'échec du compare-and-swap atomique du store.
"""

import enum
from dataclasses import dataclass
from typing import Optional


class RejectionReason(str, enum.Enum):
    INVALID_STAGE = "invalid_stage"
    ALREADY_UNLOCKED = "already_unlocked"
    OUT_OF_ORDER = "out_of_order"


@dataclass(frozen=True)
class UnlockDecision:
    stage: int
    accepted: bool
    reason: Optional[RejectionReason] = None
    expected_stage: Optional[int] = None   # k + 1, ou None si la chasse est terminée


def next_stage(unlocked_count: int, total_stages: int) -> Optional[int]:
    """Première étape verrouillée, ou None si toutes sont déverrouillées."""
    return unlocked_count + 1 if unlocked_count < total_stages else None


def decide(unlocked_count: int, stage: int, total_stages: int) -> UnlockDecision:
    expected = next_stage(unlocked_count, total_stages)

    if isinstance(stage, bool) or not isinstance(stage, int) or not 1 <= stage <= total_stages:
        return UnlockDecision(stage, False, RejectionReason.INVALID_STAGE, expected)
    if stage <= unlocked_count:
        return UnlockDecision(stage, False, RejectionReason.ALREADY_UNLOCKED, expected)
    if stage > unlocked_count + 1:
        return UnlockDecision(stage, False, RejectionReason.OUT_OF_ORDER, expected)
    return UnlockDecision(stage, True, None, expected)


def percentage(unlocked_count: int, total_stages: int) -> int:
    if total_stages <= 0:
        return 0
    # round() de Python arrondit au pair : on veut l'arrondi « commercial » de Math.round
    return int(100 * unlocked_count / total_stages + 0.5)
