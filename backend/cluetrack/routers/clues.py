"""
Routers pour la progression des équipes dans la chasse au trésor.
Lecture, déverrouillage séquentiel et remise à zéro des étapes.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cluetrack.config import settings
from cluetrack.database import get_db
from cluetrack.dependencies import get_team_name
from cluetrack.schemas.progress import (
    ProgressResponse,
    ResetResponse,
    UnlockRejection,
    UnlockRequest,
    UnlockResponse,
)
from cluetrack.services import progress_service
from cluetrack.services.progress_store import StageRejected, TeamNotFound
from cluetrack.services.unlock_rules import RejectionReason

router = APIRouter(prefix="/api/clues", tags=["Progression"])


def invalid_location_message() -> str:
    return f"Invalid location. Must be a number between 1 and {settings.total_stages}"


def _rejection_response(exc: StageRejected) -> JSONResponse:
    if exc.reason == RejectionReason.ALREADY_UNLOCKED:
        body = UnlockRejection(
            error="Location already unlocked",
            code=exc.reason.value,
            location=exc.stage,
        )
    elif exc.reason == RejectionReason.OUT_OF_ORDER:
        body = UnlockRejection(
            error=(
                f"Must complete clues in order. "
                f"Expected clue #{exc.expected_stage}, got #{exc.stage}"
            ),
            code=exc.reason.value,
            location=exc.stage,
            expected_clue=exc.expected_stage,
        )
    else:
        body = UnlockRejection(error=invalid_location_message(), code=exc.reason.value)
    return JSONResponse(status_code=400, content=body.model_dump(by_alias=True, exclude_none=True))


@router.get(
    "",
    response_model=ProgressResponse,
    summary="Progression de l'équipe",
)
def read_progress(
    team_name: str = Depends(get_team_name),
    db: Session = Depends(get_db),
):
    """
    Retourne l'état de chaque étape, les compteurs agrégés et la prochaine étape.
    L'enregistrement de l'équipe est créé (toutes étapes verrouillées) à la première lecture.
    """
    return progress_service.get_progress(db, team_name)


@router.put(
    "",
    response_model=UnlockResponse,
    responses={400: {"model": UnlockRejection}},
    summary="Déverrouiller l'étape suivante",
)
@router.post(
    "",
    response_model=UnlockResponse,
    responses={400: {"model": UnlockRejection}},
    summary="Déverrouiller l'étape suivante (alias historique de PUT)",
)
def unlock_clue(
    data: UnlockRequest,
    team_name: str = Depends(get_team_name),
    db: Session = Depends(get_db),
):
    """
    Déverrouille l'étape `location` si c'est exactement la suivante.

    Retourne 400 si l'étape est déjà déverrouillée, hors ordre (avec expectedClue)
    ou hors de [1, N]. Deux appels concurrents pour la même étape : un seul réussit.
    """
    try:
        return progress_service.unlock_clue(db, team_name, data.location)
    except StageRejected as e:
        return _rejection_response(e)
    except TeamNotFound:
        body = UnlockRejection(
            error="Team not found or no rows updated",
            code="team_not_found",
            location=data.location,
        )
        return JSONResponse(status_code=400, content=body.model_dump(by_alias=True, exclude_none=True))


@router.delete(
    "",
    response_model=ResetResponse,
    summary="Remettre à zéro la progression de l'équipe",
)
def reset_progress(
    team_name: str = Depends(get_team_name),
    db: Session = Depends(get_db),
):
    """
    Reverrouille toutes les étapes de l'équipe (administration / tests).
    Idempotent : aucune précondition sur l'état du jeu.
    """
    return progress_service.reset_team(db, team_name)
