"""
Service métier de la progression : projection des enregistrements et orchestration
du déverrouillage au-dessus du store.

Le contrôle de unlock_clue() avant l'appel au store n'est qu'un raccourci (éviter un
UPDATE voué à l'échec). La décision qui fait foi est le compare-and-swap de advance_stage().
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from cluetrack.config import settings
from cluetrack.models.progress import TeamProgress
from cluetrack.schemas.progress import (
    ClueStatus,
    ProgressResponse,
    ProgressSummary,
    ResetResponse,
    UnlockResponse,
)
from cluetrack.services import progress_store
from cluetrack.services.unlock_rules import decide, next_stage, percentage

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite ne conserve pas le fuseau horaire : les valeurs stockées sont en UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def build_clues(record: TeamProgress, total_stages: int) -> List[ClueStatus]:
    """Une entrée par étape 1..N ; timestamp renseigné uniquement si l'étape est déverrouillée."""
    slots = {slot.stage_index: slot for slot in record.stages}
    clues = []
    for index in range(1, total_stages + 1):
        slot = slots.get(index)
        unlocked = bool(slot and slot.unlocked)
        clues.append(
            ClueStatus(
                location=index,
                unlocked=unlocked,
                timestamp=_as_utc(slot.unlocked_at) if unlocked else None,
            )
        )
    return clues


def build_summary(clues: List[ClueStatus]) -> ProgressSummary:
    total = len(clues)
    unlocked = sum(1 for clue in clues if clue.unlocked)
    return ProgressSummary(
        unlocked=unlocked,
        total=total,
        percentage=percentage(unlocked, total),
        next_clue=next_stage(unlocked, total),
    )


def get_progress(db: Session, team_name: str) -> ProgressResponse:
    """Retourne la progression de l'équipe (créée à la première lecture)."""
    total = settings.total_stages
    record = progress_store.get_or_create_progress(db, team_name, total)
    clues = build_clues(record, total)
    summary = build_summary(clues)

    return ProgressResponse(
        team_name=team_name,
        clues=clues,
        progress=summary,
        last_updated=datetime.now(timezone.utc),
        is_new_team=summary.unlocked == 0,
    )


def unlock_clue(db: Session, team_name: str, stage: int) -> UnlockResponse:
    """
    Déverrouille l'étape `stage` pour l'équipe.

    Lève progress_store.StageRejected (INVALID_STAGE, ALREADY_UNLOCKED, OUT_OF_ORDER)
    ou progress_store.TeamNotFound.
    """
    total = settings.total_stages
    record = progress_store.get_or_create_progress(db, team_name, total)

    # Rejet rapide sur la vue courante (peut être périmée en cas de concurrence)
    decision = decide(record.unlocked_count, stage, total)
    if not decision.accepted:
        logger.info(
            "Rejet rapide : équipe %s, étape %s (%s)",
            team_name, stage, decision.reason.value,
        )
        raise progress_store.StageRejected(
            decision.reason,
            stage,
            expected_stage=decision.expected_stage,
            unlocked_count=record.unlocked_count,
        )

    unlocked_at = datetime.now(timezone.utc)
    record = progress_store.advance_stage(db, team_name, stage, unlocked_at, total)

    clues = build_clues(record, total)
    return UnlockResponse(
        message=f"Location {stage} unlocked successfully",
        location=stage,
        timestamp=unlocked_at,
        progress=build_summary(clues),
        updated_clues=clues,
    )


def reset_team(db: Session, team_name: str) -> ResetResponse:
    """Remet à zéro la progression de l'équipe, sans condition sur l'état du jeu."""
    progress_store.get_or_create_progress(db, team_name)
    reset_at = datetime.now(timezone.utc)
    progress_store.reset_progress(db, team_name, reset_at)
    return ResetResponse(team_name=team_name, reset_at=reset_at)
