"""
Catalogue des étapes configurées et génération des QR codes imprimables.
"""

import io
import logging
from typing import Optional

import qrcode
from sqlalchemy.orm import Session

from cluetrack.config import StageTarget, settings
from cluetrack.schemas.progress import StagePublic, StagesResponse
from cluetrack.services import progress_store
from cluetrack.services.geo import effective_tolerance
from cluetrack.services.unlock_rules import next_stage

logger = logging.getLogger(__name__)


def get_stage(index: int) -> Optional[StageTarget]:
    """Retourne la cible de l'étape `index` (1..N), ou None si hors limites."""
    if 1 <= index <= settings.total_stages:
        return settings.STAGES[index - 1]
    return None


def list_stages(db: Session, team_name: str) -> StagesResponse:
    """
    Liste les étapes avec l'état de l'équipe.
    Le texte d'indice n'est révélé que jusqu'à l'étape suivante incluse.
    """
    total = settings.total_stages
    record = progress_store.get_or_create_progress(db, team_name, total)
    upcoming = next_stage(record.unlocked_count, total)
    reveal_up_to = upcoming or total

    stages = []
    for index, target in enumerate(settings.STAGES, start=1):
        stages.append(
            StagePublic(
                index=index,
                name=target.name,
                latitude=target.latitude if target.has_coordinates else None,
                longitude=target.longitude if target.has_coordinates else None,
                tolerance=effective_tolerance(target.tolerance, settings.DEFAULT_TOLERANCE_M),
                unlocked=index <= record.unlocked_count,
                clue=target.clue if index <= reveal_up_to else None,
            )
        )
    return StagesResponse(team_name=team_name, stages=stages, next_clue=upcoming)


def generate_stage_qr_image(index: int) -> bytes:
    """
    Génère une image PNG du QR code encodant la valeur attendue de l'étape.
    Lève ValueError si l'étape est introuvable.
    """
    stage = get_stage(index)
    if stage is None:
        raise ValueError(f"Stage {index} not found.")

    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(stage.qr_value)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    logger.info("QR code généré pour l'étape %d (%s)", index, stage.name)
    return buf.getvalue()
