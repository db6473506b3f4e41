"""
Modèles SQLAlchemy pour la progression des équipes.

Une ligne TeamProgress par équipe (clé = team_name fourni par le fournisseur d'identité)
et N lignes StageSlot (une par étape, triées par stage_index).

unlocked_count est la précondition du compare-and-swap : une étape s n'est déverrouillée
que par un UPDATE ... WHERE unlocked_count = s - 1 (voir services/progress_store.py).
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship

from cluetrack.database import Base


class TeamProgress(Base):
    """Progression d'une équipe — préfixe contigu d'étapes déverrouillées {1..k}."""
    __tablename__ = "team_progress"

    team_name = Column(String(255), primary_key=True)
    unlocked_count = Column(Integer, nullable=False, default=0)   # k

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    reset_at = Column(DateTime(timezone=True), nullable=True)     # Dernière remise à zéro

    stages = relationship(
        "StageSlot",
        back_populates="team",
        order_by="StageSlot.stage_index",
        cascade="all, delete-orphan",
    )


class StageSlot(Base):
    """Emplacement d'étape : déverrouillé ou non, horodaté une seule fois au déverrouillage."""
    __tablename__ = "stage_slots"

    team_name = Column(
        String(255),
        ForeignKey("team_progress.team_name", ondelete="CASCADE"),
        primary_key=True,
    )
    stage_index = Column(Integer, primary_key=True)   # 1..N
    unlocked = Column(Boolean, nullable=False, default=False)
    unlocked_at = Column(DateTime(timezone=True), nullable=True)

    team = relationship("TeamProgress", back_populates="stages")
