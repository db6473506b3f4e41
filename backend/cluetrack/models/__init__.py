# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant la création des tables au démarrage.

from cluetrack.models.progress import StageSlot, TeamProgress  # noqa: F401
