"""
Accès au store de progression des équipes (source de vérité de la chasse).

Garanties :
- get_or_create_progress : création paresseuse, sûre en concurrence. Deux premières lectures
  simultanées pour la même équipe ne créent jamais deux enregistrements divergents
  (clé primaire team_name + reprise sur IntegrityError).
- advance_stage : compare-and-swap en un seul UPDATE conditionnel
  (WHERE unlocked_count = stage - 1). Jamais de lecture-puis-écriture : deux
  déverrouillages concurrents de la même étape ne peuvent pas réussir tous les deux.
- reset_progress : remise à zéro complète de toutes les étapes (pas de suppression).
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from cluetrack.config import settings
from cluetrack.models.progress import StageSlot, TeamProgress
from cluetrack.services.unlock_rules import RejectionReason, decide

logger = logging.getLogger(__name__)


class TeamNotFound(ValueError):
    """L'équipe n'a pas encore d'enregistrement de progression."""

    def __init__(self, team_name: str):
        super().__init__(f"Team {team_name} not found.")
        self.team_name = team_name


class StageRejected(ValueError):
    """Déverrouillage refusé par les règles de progression séquentielle."""

    def __init__(
        self,
        reason: RejectionReason,
        stage: int,
        expected_stage: Optional[int] = None,
        unlocked_count: Optional[int] = None,
    ):
        super().__init__(f"Stage {stage} rejected: {reason.value}")
        self.reason = reason
        self.stage = stage
        self.expected_stage = expected_stage
        self.unlocked_count = unlocked_count


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _fetch(db: Session, team_name: str) -> Optional[TeamProgress]:
    return db.execute(
        select(TeamProgress)
        .where(TeamProgress.team_name == team_name)
        .options(selectinload(TeamProgress.stages))
        .execution_options(populate_existing=True)
    ).scalar()


def get_or_create_progress(
    db: Session,
    team_name: str,
    total_stages: Optional[int] = None,
) -> TeamProgress:
    """
    Retourne la progression de l'équipe, en la créant (toutes étapes verrouillées) si absente.

    En cas de création concurrente, l'INSERT perdant lève IntegrityError sur la clé primaire :
    on annule et on relit l'enregistrement créé par l'autre requête.
    """
    total = total_stages or settings.total_stages

    record = _fetch(db, team_name)
    if record is not None:
        return record

    record = TeamProgress(
        team_name=team_name,
        unlocked_count=0,
        stages=[StageSlot(stage_index=i, unlocked=False) for i in range(1, total + 1)],
    )
    db.add(record)
    try:
        db.commit()
        logger.info("Progression créée pour l'équipe %s (%d étapes)", team_name, total)
    except IntegrityError:
        db.rollback()
        logger.debug("Création concurrente détectée pour l'équipe %s, relecture", team_name)

    record = _fetch(db, team_name)
    if record is None:
        raise TeamNotFound(team_name)
    return record


def advance_stage(
    db: Session,
    team_name: str,
    stage: int,
    unlocked_at: Optional[datetime] = None,
    total_stages: Optional[int] = None,
) -> TeamProgress:
    """
    Déverrouille atomiquement l'étape `stage` si c'est exactement la suivante (k + 1).

    Lève TeamNotFound si l'équipe n'existe pas, StageRejected (ALREADY_UNLOCKED,
    OUT_OF_ORDER, INVALID_STAGE) sinon. Retourne l'enregistrement complet mis à jour.
    """
    total = total_stages or settings.total_stages
    if isinstance(stage, bool) or not isinstance(stage, int) or not 1 <= stage <= total:
        raise StageRejected(RejectionReason.INVALID_STAGE, stage)

    unlocked_at = unlocked_at or _now()

    # Compare-and-swap : la précondition k = stage - 1 est vérifiée par la BDD elle-même
    result = db.execute(
        update(TeamProgress)
        .where(
            TeamProgress.team_name == team_name,
            TeamProgress.unlocked_count == stage - 1,
        )
        .values(unlocked_count=TeamProgress.unlocked_count + 1, updated_at=unlocked_at)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        db.rollback()
        current = db.execute(
            select(TeamProgress.unlocked_count).where(TeamProgress.team_name == team_name)
        ).scalar()
        if current is None:
            raise TeamNotFound(team_name)

        decision = decide(current, stage, total)
        logger.warning(
            "Déverrouillage refusé : équipe %s, étape %d (%s, k=%d)",
            team_name, stage, decision.reason.value if decision.reason else "conflict", current,
        )
        # decide() accepte si k a changé entre l'UPDATE et la relecture : c'est un conflit,
        # l'étape a été déverrouillée par la requête concurrente.
        raise StageRejected(
            decision.reason or RejectionReason.ALREADY_UNLOCKED,
            stage,
            expected_stage=decision.expected_stage,
            unlocked_count=current,
        )

    # L'horodatage n'est écrit qu'à la transition verrouillé → déverrouillé
    slot_result = db.execute(
        update(StageSlot)
        .where(
            StageSlot.team_name == team_name,
            StageSlot.stage_index == stage,
            StageSlot.unlocked.is_(False),
        )
        .values(unlocked=True, unlocked_at=unlocked_at)
        .execution_options(synchronize_session=False)
    )
    if slot_result.rowcount == 0:
        # Étape ajoutée à la configuration après la création de l'équipe
        db.add(StageSlot(team_name=team_name, stage_index=stage, unlocked=True, unlocked_at=unlocked_at))

    db.commit()
    logger.info("Équipe %s : étape %d déverrouillée", team_name, stage)

    return _fetch(db, team_name)


def reset_progress(
    db: Session,
    team_name: str,
    reset_at: Optional[datetime] = None,
) -> TeamProgress:
    """
    Reverrouille toutes les étapes de l'équipe en une transaction.

    Chaque emplacement reçoit l'horodatage de remise à zéro ; il sera réécrit au prochain
    déverrouillage. Lève TeamNotFound si l'équipe n'existe pas.
    """
    reset_at = reset_at or _now()

    result = db.execute(
        update(TeamProgress)
        .where(TeamProgress.team_name == team_name)
        .values(unlocked_count=0, reset_at=reset_at, updated_at=reset_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise TeamNotFound(team_name)

    db.execute(
        update(StageSlot)
        .where(StageSlot.team_name == team_name)
        .values(unlocked=False, unlocked_at=reset_at)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info("Progression de l'équipe %s remise à zéro", team_name)

    return _fetch(db, team_name)
