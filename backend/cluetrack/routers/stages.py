"""
Routers pour le catalogue des étapes et les QR codes imprimables.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from cluetrack.config import settings
from cluetrack.database import get_db
from cluetrack.dependencies import get_team_name
from cluetrack.schemas.progress import StagesResponse
from cluetrack.services import stage_service

router = APIRouter(prefix="/api/clues/stages", tags=["Étapes"])


@router.get("", response_model=StagesResponse, summary="Catalogue des étapes")
def list_stages(
    team_name: str = Depends(get_team_name),
    db: Session = Depends(get_db),
):
    """
    Liste les étapes configurées avec leurs coordonnées publiques.
    Les indices des étapes au-delà de la suivante restent masqués.
    """
    return stage_service.list_stages(db, team_name)


@router.get("/{index}/qrcode", summary="QR code imprimable d'une étape")
def stage_qrcode(index: int, team_name: str = Depends(get_team_name)):
    """
    Retourne l'image PNG du QR code à afficher sur le lieu de l'étape.
    Réservé aux équipes d'administration (ADMIN_TEAMS). 404 si l'étape est inconnue.
    """
    if team_name not in settings.ADMIN_TEAMS:
        raise HTTPException(status_code=403, detail={"error": "forbidden", "message": "Admin only"})
    try:
        png = stage_service.generate_stage_qr_image(index)
    except ValueError as e:
        raise HTTPException(status_code=404, detail={"error": "stage_not_found", "message": str(e)})

    return StreamingResponse(
        iter([png]),
        media_type="image/png",
        headers={"Content-Disposition": f"inline; filename=stage_{index}.png"},
    )
