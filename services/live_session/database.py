# ============================================================
# database.py — Moteur SQLModel partagé
# ------------------------------------------------------------
# Le moteur est créé au premier usage, pour que les tests
# puissent importer l’API sans base PostgreSQL disponible.
# ============================================================
from sqlmodel import Session, SQLModel, create_engine

from . import config
from . import models  # noqa: F401  (enregistre les tables dans le metadata)

_engine = None


def get_engine():
    global _engine
    if _engine is None:
        _engine = create_engine(config.DATABASE_URL, pool_pre_ping=True)
    return _engine


def init_db(engine=None):
    SQLModel.metadata.create_all(engine or get_engine())


# Dépendance FastAPI : fournit une Session DB par requête, auto-close
def get_session():
    with Session(get_engine()) as s:
        yield s
