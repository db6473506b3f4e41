"""
Configuration de la connexion à la base de données.
PostgreSQL en production, SQLite en développement et dans les tests.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from cluetrack.config import settings


def configure_sqlite(engine: Engine) -> Engine:
    """
    Sérialise les écritures concurrentes sous SQLite : chaque transaction démarre par
    BEGIN IMMEDIATE (verrou d'écriture pris d'emblée, attente via busy timeout) au lieu
    d'un BEGIN différé qui échouerait en « database is locked » lors de la montée de verrou.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(url: str, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        # SQLite refuse par défaut de partager une connexion entre threads (workers FastAPI)
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        return configure_sqlite(create_engine(url, connect_args=connect_args, **kwargs))
    return create_engine(url, **kwargs)


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dépendance FastAPI — fournit une session BDD et la ferme après usage."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
