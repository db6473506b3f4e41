"""
Tests d'intégration API pour la progression des équipes.
Testent GET / PUT / POST / DELETE /api/clues
"""

from datetime import datetime, timezone
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from cluetrack.config import settings
from cluetrack.schemas.progress import ClueStatus, ProgressResponse, ProgressSummary
from cluetrack.services.progress_store import StageRejected, TeamNotFound
from cluetrack.services.unlock_rules import RejectionReason
from conftest import ALLOWED_ORIGIN, auth_headers, make_token


# --- Helpers ---

def make_progress_response(team_name="team-alpha", unlocked=0, total=7) -> ProgressResponse:
    clues = [
        ClueStatus(
            location=i,
            unlocked=i <= unlocked,
            timestamp=datetime(2026, 3, 14, 9, i, tzinfo=timezone.utc) if i <= unlocked else None,
        )
        for i in range(1, total + 1)
    ]
    return ProgressResponse(
        team_name=team_name,
        clues=clues,
        progress=ProgressSummary(
            unlocked=unlocked,
            total=total,
            percentage=round(100 * unlocked / total),
            next_clue=unlocked + 1 if unlocked < total else None,
        ),
        last_updated=datetime.now(timezone.utc),
        is_new_team=unlocked == 0,
    )


# ============================================================
# Préconditions : configuration, origine, identité
# ============================================================

def test_origine_absente_refusee(client):
    """Sans en-tête Origin, l'origine de l'URL (testserver) n'est pas autorisée → 403."""
    response = client.get("/api/clues", headers=auth_headers(origin=None))
    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "invalid_origin"


def test_origine_inconnue_refusee_meme_sans_authentification(client):
    with patch("cluetrack.routers.clues.progress_service.get_progress") as mock:
        response = client.get("/api/clues", headers={"Origin": "https://evil.example.com"})

    assert response.status_code == 403
    mock.assert_not_called()


def test_toutes_les_origines_autorisees_acceptees(client):
    for origin in settings.ALLOWED_ORIGINS:
        with patch("cluetrack.routers.clues.progress_service.get_progress") as mock:
            mock.return_value = make_progress_response()
            response = client.get("/api/clues", headers=auth_headers(origin=origin))
        assert response.status_code == 200, origin


def test_sans_jeton_401(client):
    response = client.get("/api/clues", headers={"Origin": ALLOWED_ORIGIN})
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "unauthorized"


def test_jeton_invalide_401(client):
    response = client.get(
        "/api/clues",
        headers={"Origin": ALLOWED_ORIGIN, "Authorization": "Bearer pas-un-jwt"},
    )
    assert response.status_code == 401


def test_jeton_sans_nom_equipe_400(client):
    token = make_token(team_name=None)
    response = client.delete(
        "/api/clues",
        headers={"Origin": ALLOWED_ORIGIN, "Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "username_not_found"


def test_configuration_manquante_500(client, monkeypatch):
    monkeypatch.setattr(settings, "STAGES", [])
    with patch("cluetrack.routers.clues.progress_service.get_progress") as mock:
        response = client.get("/api/clues", headers=auth_headers())

    assert response.status_code == 500
    assert response.json()["detail"]["error"] == "server_configuration_error"
    mock.assert_not_called()


# ============================================================
# GET /api/clues
# ============================================================

def test_lecture_progression(client):
    with patch("cluetrack.routers.clues.progress_service.get_progress") as mock:
        mock.return_value = make_progress_response(unlocked=2)
        response = client.get("/api/clues", headers=auth_headers())

    assert response.status_code == 200
    data = response.json()
    assert data["team_name"] == "team-alpha"
    assert data["progress"] == {"unlocked": 2, "total": 7, "percentage": 29, "nextClue": 3}
    assert data["isNewTeam"] is False
    assert "lastUpdated" in data
    assert data["clues"][2] == {"location": 3, "unlocked": False, "timestamp": None}
    mock.assert_called_once()
    assert mock.call_args.args[1] == "team-alpha"


def test_lecture_store_indisponible_500(client):
    with patch("cluetrack.routers.clues.progress_service.get_progress") as mock:
        mock.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
        response = client.get("/api/clues", headers=auth_headers())

    assert response.status_code == 500
    assert response.json()["error"] == "store_unavailable"


# ============================================================
# PUT /api/clues — validation du corps
# ============================================================

def test_location_chaine_refusee(client):
    response = client.put("/api/clues", json={"location": "3"}, headers=auth_headers())
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert "between 1 and 7" in response.json()["error"]


def test_location_booleen_refuse(client):
    response = client.put("/api/clues", json={"location": True}, headers=auth_headers())
    assert response.status_code == 400


def test_location_flottant_refuse(client):
    response = client.put("/api/clues", json={"location": 2.5}, headers=auth_headers())
    assert response.status_code == 400


def test_location_absente_refusee(client):
    response = client.put("/api/clues", json={}, headers=auth_headers())
    assert response.status_code == 400


def test_corps_non_json_refuse(client):
    response = client.put(
        "/api/clues",
        content=b"location=1",
        headers={**auth_headers(), "Content-Type": "application/json"},
    )
    assert response.status_code == 400


# ============================================================
# PUT /api/clues — rejets métier
# ============================================================

def test_deja_deverrouillee_400(client):
    with patch("cluetrack.routers.clues.progress_service.unlock_clue") as mock:
        mock.side_effect = StageRejected(RejectionReason.ALREADY_UNLOCKED, 1, expected_stage=2)
        response = client.put("/api/clues", json={"location": 1}, headers=auth_headers())

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "Location already unlocked",
        "code": "already_unlocked",
        "location": 1,
    }


def test_hors_ordre_400_avec_etape_attendue(client):
    with patch("cluetrack.routers.clues.progress_service.unlock_clue") as mock:
        mock.side_effect = StageRejected(RejectionReason.OUT_OF_ORDER, 3, expected_stage=1)
        response = client.put("/api/clues", json={"location": 3}, headers=auth_headers())

    assert response.status_code == 400
    data = response.json()
    assert data["success"] is False
    assert data["expectedClue"] == 1
    assert data["location"] == 3
    assert data["error"] == "Must complete clues in order. Expected clue #1, got #3"


def test_index_hors_limites_400(client):
    with patch("cluetrack.routers.clues.progress_service.unlock_clue") as mock:
        mock.side_effect = StageRejected(RejectionReason.INVALID_STAGE, 9)
        response = client.put("/api/clues", json={"location": 9}, headers=auth_headers())

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_stage"


def test_equipe_introuvable_400(client):
    with patch("cluetrack.routers.clues.progress_service.unlock_clue") as mock:
        mock.side_effect = TeamNotFound("team-alpha")
        response = client.put("/api/clues", json={"location": 1}, headers=auth_headers())

    assert response.status_code == 400
    assert response.json()["code"] == "team_not_found"


# ============================================================
# Scénarios de bout en bout (SQLite)
# ============================================================

def test_nouvelle_equipe_tout_verrouille(sqlite_client):
    response = sqlite_client.get("/api/clues", headers=auth_headers())

    assert response.status_code == 200
    data = response.json()
    assert data["isNewTeam"] is True
    assert len(data["clues"]) == 7
    assert all(not c["unlocked"] and c["timestamp"] is None for c in data["clues"])
    assert data["progress"] == {"unlocked": 0, "total": 7, "percentage": 0, "nextClue": 1}


def test_deverrouillage_premiere_etape(sqlite_client):
    response = sqlite_client.put("/api/clues", json={"location": 1}, headers=auth_headers())

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["wasUpdated"] is True
    assert data["location"] == 1
    assert data["message"] == "Location 1 unlocked successfully"
    assert data["progress"] == {"unlocked": 1, "total": 7, "percentage": 14, "nextClue": 2}
    assert data["updated_clues"][0]["unlocked"] is True
    assert data["updated_clues"][0]["timestamp"] is not None
    assert data["updated_clues"][1]["unlocked"] is False


def test_double_deverrouillage_rejete(sqlite_client):
    first = sqlite_client.put("/api/clues", json={"location": 1}, headers=auth_headers())
    second = sqlite_client.put("/api/clues", json={"location": 1}, headers=auth_headers())

    assert first.status_code == 200
    assert second.status_code == 400
    assert second.json()["error"] == "Location already unlocked"


def test_ordre_impose(sqlite_client):
    skip = sqlite_client.put("/api/clues", json={"location": 3}, headers=auth_headers())
    assert skip.status_code == 400
    assert skip.json()["expectedClue"] == 1

    sqlite_client.put("/api/clues", json={"location": 1}, headers=auth_headers())
    skip = sqlite_client.put("/api/clues", json={"location": 3}, headers=auth_headers())
    assert skip.json()["expectedClue"] == 2


def test_index_hors_limites_bout_en_bout(sqlite_client):
    response = sqlite_client.put("/api/clues", json={"location": 8}, headers=auth_headers())
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid location. Must be a number between 1 and 7"


def test_post_alias_de_put(sqlite_client):
    response = sqlite_client.post("/api/clues", json={"location": 1}, headers=auth_headers())
    assert response.status_code == 200
    assert response.json()["progress"]["nextClue"] == 2


def test_chasse_complete_next_clue_null(sqlite_client):
    for stage in range(1, 8):
        response = sqlite_client.put("/api/clues", json={"location": stage}, headers=auth_headers())
        assert response.status_code == 200

    data = sqlite_client.get("/api/clues", headers=auth_headers()).json()
    assert data["progress"] == {"unlocked": 7, "total": 7, "percentage": 100, "nextClue": None}


def test_equipes_isolees(sqlite_client):
    sqlite_client.put("/api/clues", json={"location": 1}, headers=auth_headers("team-alpha"))

    other = sqlite_client.get("/api/clues", headers=auth_headers("team-beta")).json()
    assert other["team_name"] == "team-beta"
    assert other["progress"]["unlocked"] == 0


def test_reset_puis_redemarrage(sqlite_client):
    sqlite_client.put("/api/clues", json={"location": 1}, headers=auth_headers())
    sqlite_client.put("/api/clues", json={"location": 2}, headers=auth_headers())

    response = sqlite_client.delete("/api/clues", headers=auth_headers())
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["team_name"] == "team-alpha"
    assert "reset_at" in data

    progress = sqlite_client.get("/api/clues", headers=auth_headers()).json()
    assert all(not c["unlocked"] for c in progress["clues"])
    assert progress["progress"]["nextClue"] == 1

    again = sqlite_client.put("/api/clues", json={"location": 1}, headers=auth_headers())
    assert again.status_code == 200


def test_reset_equipe_jamais_vue(sqlite_client):
    """La remise à zéro est inconditionnelle : une équipe inconnue est créée puis remise à zéro."""
    response = sqlite_client.delete("/api/clues", headers=auth_headers("team-neuve"))
    assert response.status_code == 200
    assert response.json()["team_name"] == "team-neuve"


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
