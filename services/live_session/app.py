# ============================================================
# app.py — Point d’entrée du service Live Session
# ------------------------------------------------------------
# Ce module initialise l’application FastAPI du service :
#   - Configure les logs
#   - Crée les tables dans la base de données PostgreSQL
#   - Démarre un thread consommateur RabbitMQ (start_consumer)
#   - Démarre le balayage périodique si SWEEP_INTERVAL_SECONDS > 0
#   - Monte les routes API
# ============================================================
import logging
import threading
import time

from fastapi import FastAPI
from sqlmodel import Session

from . import config
from .api import router
from .consumer import start_consumer
from .database import get_engine, init_db
from .publisher import RabbitNotifier
from .service import LiveSessionService

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Live Session Service")


# Rattrapage des sessions que personne ne relit : même logique
# que la synchro à la lecture, appliquée à toutes les sessions dues.
def start_sweeper(interval: int):
    while True:
        time.sleep(interval)
        try:
            with Session(get_engine()) as s:
                LiveSessionService(s, notifier=RabbitNotifier()).sweep()
        except Exception:
            logger.exception("[sweeper] sweep failed")


# Exécuté automatiquement par FastAPI au lancement du conteneur.
# 1️. Crée les tables SQL.
# 2️. Lance un thread secondaire pour écouter RabbitMQ sans bloquer l’API.
# 3️. Lance le balayage périodique s’il est activé.

@app.on_event("startup")
def start():
    init_db()
    threading.Thread(target=start_consumer, daemon=True).start()
    if config.SWEEP_INTERVAL_SECONDS > 0:
        logger.info("periodic sweep every %ss", config.SWEEP_INTERVAL_SECONDS)
        threading.Thread(target=start_sweeper, args=(config.SWEEP_INTERVAL_SECONDS,), daemon=True).start()


@app.get("/health")
def health():
    return {"ok": True}


# Inclusion des routes principales REST (API Live Session)

app.include_router(router)
