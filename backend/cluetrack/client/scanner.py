"""
Orchestration du scan côté appareil : caméra → décodage QR → GPS → appel d'API.

Machine à états :
  idle → scanning → decoding → matched | unmatched
       → (matched + coordonnées) locating → proximity_checked
       → unlocking → unlocked | rejected → idle

Règles :
- Le texte décodé n'est comparé qu'à la valeur QR de l'étape SUIVANTE de l'équipe.
  S'il correspond à une autre étape, on distingue « étape déjà passée » et
  « étape pas encore atteignable », mais le serveur reste seul juge.
- Coordonnées sentinelles (0, 0) : pas de GPS, appel de déverrouillage direct.
- La caméra est acquise dans un `async with` : elle est libérée sur tous les chemins
  de sortie (succès, erreur, stop(), annulation de la tâche).

Objets injectés :
- camera     : `open()` → gestionnaire de contexte asynchrone dont la valeur expose
               `async read_frame()`
- decoder    : callable(frame) → texte du QR ou None
- geolocator : objet exposant `async current_position()` (voir location.CachedGeolocator)
- api        : client.api.ProgressApiClient
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from cluetrack.client.api import ProgressApiError
from cluetrack.client.location import LocationUnavailable
from cluetrack.config import StageTarget, settings
from cluetrack.services.geo import distance_meters, effective_tolerance
from cluetrack.services.qr_payload import TargetDescriptor, parse_qr_payload

logger = logging.getLogger(__name__)

IDLE_HINT_THRESHOLD = 100
FRAME_INTERVAL_S = 0.1


class ScanPhase(str, enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DECODING = "decoding"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    LOCATING = "locating"
    PROXIMITY_CHECKED = "proximity_checked"
    UNLOCKING = "unlocking"
    UNLOCKED = "unlocked"
    REJECTED = "rejected"


class ScanReason(str, enum.Enum):
    UNLOCKED = "unlocked"
    INVALID_PAYLOAD = "invalid_payload"
    WRONG_QR = "wrong_qr"
    EARLIER_STAGE = "earlier_stage"
    LATER_STAGE = "later_stage"
    ALREADY_COMPLETED = "already_completed"
    TOO_FAR = "too_far"
    LOCATION_UNAVAILABLE = "location_unavailable"
    SERVER_REJECTED = "server_rejected"
    SERVER_ERROR = "server_error"
    CANCELLED = "cancelled"


@dataclass
class ScanOutcome:
    """Résultat d'une tentative de scan (non persisté)."""
    reason: ScanReason
    message: str
    stage: Optional[int] = None
    matched: bool = False
    distance_m: Optional[float] = None
    tolerance_m: Optional[float] = None
    accepted: bool = False
    progress: Optional[Dict[str, Any]] = None
    raw: Optional[str] = None


@dataclass
class _ScanContext:
    raw: str
    descriptor: Optional[TargetDescriptor]
    next_stage: Optional[int]
    matched_stage: Optional[int] = None


class ScanClient:
    def __init__(
        self,
        api,
        stages: List[StageTarget],
        camera=None,
        decoder: Optional[Callable[[Any], Optional[str]]] = None,
        geolocator=None,
        default_tolerance: float = settings.DEFAULT_TOLERANCE_M,
        idle_hint_threshold: int = IDLE_HINT_THRESHOLD,
        frame_interval: float = FRAME_INTERVAL_S,
        on_status: Optional[Callable[[str], None]] = None,
    ):
        self.api = api
        self.stages = stages
        self.camera = camera
        self.decoder = decoder
        self.geolocator = geolocator
        self.default_tolerance = default_tolerance
        self.idle_hint_threshold = idle_hint_threshold
        self.frame_interval = frame_interval
        self.on_status = on_status

        self.phase = ScanPhase.IDLE
        self.transitions: List[ScanPhase] = []
        self._stop_requested = False
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Cycle de vie
    # ------------------------------------------------------------------

    def start(self, progress: Optional[Dict[str, Any]] = None) -> asyncio.Task:
        """Lance un cycle de scan dans une tâche annulable (à appeler depuis la boucle asyncio)."""
        self._task = asyncio.ensure_future(self.scan(progress))
        return self._task

    def stop(self) -> None:
        """Arrête le scan en cours ; la caméra est libérée par la sortie du `async with`."""
        self._stop_requested = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def scan(self, progress: Optional[Dict[str, Any]] = None) -> ScanOutcome:
        """
        Cycle complet : lecture de la progression, capture d'un QR, traitement.
        Quelle que soit l'issue (résultat, exception, annulation), la phase finale est idle.
        """
        self._stop_requested = False
        try:
            if progress is None:
                try:
                    progress = await self.api.get_progress()
                except ProgressApiError as exc:
                    return self._finish(ScanOutcome(
                        ScanReason.SERVER_ERROR,
                        f"Server/network error while loading progress: {exc}",
                    ))

            raw = await self.capture_payload()
            if raw is None:
                return self._finish(ScanOutcome(ScanReason.CANCELLED, "Scan cancelled."))
            return await self.handle_payload(raw, progress)
        finally:
            # Annulation ou erreur en cours de capture : retour à idle
            if self.phase != ScanPhase.IDLE:
                self._set_phase(ScanPhase.IDLE)

    async def capture_payload(self) -> Optional[str]:
        """
        Échantillonne les images jusqu'à décoder un QR, ou None si le scan est arrêté.
        Après `idle_hint_threshold` images sans résultat, suggère d'ajuster l'éclairage.
        """
        self._set_phase(ScanPhase.SCANNING)
        idle_frames = 0

        async with self.camera.open() as stream:
            while not self._stop_requested:
                frame = await stream.read_frame()
                raw = self.decoder(frame) if frame is not None else None
                if raw:
                    logger.debug("QR décodé après %d images vides", idle_frames)
                    return raw

                idle_frames += 1
                if idle_frames >= self.idle_hint_threshold:
                    self._status("No QR code detected. Try adjusting the lighting or the camera angle.")
                    idle_frames = 0
                await asyncio.sleep(self.frame_interval)
        return None

    # ------------------------------------------------------------------
    # Traitement d'un QR décodé
    # ------------------------------------------------------------------

    async def handle_payload(self, raw: str, progress: Dict[str, Any]) -> ScanOutcome:
        self._set_phase(ScanPhase.DECODING)
        raw = raw.strip()
        ctx = _ScanContext(
            raw=raw,
            descriptor=parse_qr_payload(raw),
            next_stage=(progress.get("progress") or {}).get("nextClue"),
        )
        ctx.matched_stage = self._stage_for_payload(raw)

        if ctx.next_stage is None:
            self._set_phase(ScanPhase.UNMATCHED)
            return self._finish(ScanOutcome(
                ScanReason.ALREADY_COMPLETED,
                "All clues are already unlocked. The hunt is complete!",
                stage=ctx.matched_stage,
                raw=raw,
            ))

        if ctx.matched_stage != ctx.next_stage:
            self._set_phase(ScanPhase.UNMATCHED)
            return self._finish(self._unmatched_outcome(ctx))

        self._set_phase(ScanPhase.MATCHED)
        stage_index = ctx.next_stage
        target = self.stages[stage_index - 1]

        distance = None
        tolerance = None
        if target.has_coordinates:
            qr_tolerance = ctx.descriptor.tolerance if ctx.descriptor else None
            tolerance = effective_tolerance(target.tolerance, self.default_tolerance, qr_tolerance)

            self._set_phase(ScanPhase.LOCATING)
            try:
                position = await self.geolocator.current_position()
            except LocationUnavailable as exc:
                return self._finish(ScanOutcome(
                    ScanReason.LOCATION_UNAVAILABLE,
                    f"Could not get your location: {exc}",
                    stage=stage_index,
                    matched=True,
                    tolerance_m=tolerance,
                    raw=raw,
                ), rejected=True)

            distance = distance_meters(
                position.latitude, position.longitude, target.latitude, target.longitude,
            )
            self._set_phase(ScanPhase.PROXIMITY_CHECKED)
            if distance > tolerance:
                return self._finish(ScanOutcome(
                    ScanReason.TOO_FAR,
                    f"Too far from the target: you are {round(distance)}m away, "
                    f"required within {round(tolerance)}m.",
                    stage=stage_index,
                    matched=True,
                    distance_m=distance,
                    tolerance_m=tolerance,
                    raw=raw,
                ), rejected=True)

        self._set_phase(ScanPhase.UNLOCKING)
        try:
            result = await self.api.unlock(stage_index)
        except ProgressApiError as exc:
            return self._finish(ScanOutcome(
                ScanReason.SERVER_ERROR,
                f"Server/network error: {exc}",
                stage=stage_index,
                matched=True,
                distance_m=distance,
                tolerance_m=tolerance,
                raw=raw,
            ), rejected=True)

        if result.accepted:
            self._set_phase(ScanPhase.UNLOCKED)
            return self._finish(ScanOutcome(
                ScanReason.UNLOCKED,
                f"Clue {stage_index} unlocked: {target.name}",
                stage=stage_index,
                matched=True,
                distance_m=distance,
                tolerance_m=tolerance,
                accepted=True,
                progress=result.progress,
                raw=raw,
            ))

        if result.code == "already_unlocked":
            reason, message = ScanReason.ALREADY_COMPLETED, f"Clue {stage_index} is already completed."
        else:
            reason, message = ScanReason.SERVER_REJECTED, result.error or "Unlock rejected by the server."
        return self._finish(ScanOutcome(
            reason,
            message,
            stage=stage_index,
            matched=True,
            distance_m=distance,
            tolerance_m=tolerance,
            raw=raw,
        ), rejected=True)

    def _stage_for_payload(self, raw: str) -> Optional[int]:
        for index, target in enumerate(self.stages, start=1):
            if target.qr_value == raw:
                return index
        return None

    def _unmatched_outcome(self, ctx: _ScanContext) -> ScanOutcome:
        if ctx.matched_stage is not None and ctx.matched_stage < ctx.next_stage:
            return ScanOutcome(
                ScanReason.EARLIER_STAGE,
                f"This QR code belongs to clue {ctx.matched_stage}, which you already completed. "
                f"Find clue {ctx.next_stage}.",
                stage=ctx.matched_stage,
                raw=ctx.raw,
            )
        if ctx.matched_stage is not None:
            return ScanOutcome(
                ScanReason.LATER_STAGE,
                f"This QR code belongs to clue {ctx.matched_stage}, which is not reachable yet. "
                f"Find clue {ctx.next_stage} first.",
                stage=ctx.matched_stage,
                raw=ctx.raw,
            )
        if ctx.descriptor is None:
            return ScanOutcome(ScanReason.INVALID_PAYLOAD, f"Invalid QR format: {ctx.raw}", raw=ctx.raw)
        return ScanOutcome(
            ScanReason.WRONG_QR,
            f"Wrong QR code for clue {ctx.next_stage}.",
            raw=ctx.raw,
        )

    # ------------------------------------------------------------------

    def _set_phase(self, phase: ScanPhase) -> None:
        self.phase = phase
        self.transitions.append(phase)

    def _status(self, message: str) -> None:
        logger.info(message)
        if self.on_status is not None:
            self.on_status(message)

    def _finish(self, outcome: ScanOutcome, rejected: bool = False) -> ScanOutcome:
        if rejected:
            self._set_phase(ScanPhase.REJECTED)
        self._status(outcome.message)
        self._set_phase(ScanPhase.IDLE)
        return outcome
