# ============================================================
# Live Session Service — RabbitMQ Consumer
# ------------------------------------------------------------
# Écoute les événements du canal temps réel publiés sur
# l'échange "events" :
#   - live:startSession : l’hôte démarre la session
#   - live:endSession   : l’hôte termine la session → règlement
# Le même "end" peut aussi arriver par l’API ou par la synchro
# paresseuse : settlement.terminate() est idempotent, et on
# garde en plus la trace des messages déjà traités.
# ============================================================
import json
import logging
import time
from typing import Optional

import pika
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import config
from .database import get_engine
from .errors import EngineError
from .models import ProcessedMessage
from .publisher import EXCHANGE, RabbitNotifier
from .service import LiveSessionService

logger = logging.getLogger(__name__)

START_SESSION = "live:startSession"
END_SESSION = "live:endSession"
HANDLED = (START_SESSION, END_SESSION)

# ------------------------------------------------------------
# Événements start/end déjà vus
# ------------------------------------------------------------
# Le canal temps réel peut renvoyer plusieurs fois le même
# "live:endSession" (reconnexion du client, redélivrance). La
# clôture est déjà idempotente, mais on note chaque événement
# traité pour ne pas relancer start/end ni re-logger l’issue.
# ------------------------------------------------------------
def event_seen(s: Session, event_id: str) -> bool:
    stmt = select(ProcessedMessage).where(ProcessedMessage.message_id == event_id)
    return s.exec(stmt).first() is not None


def remember_event(s: Session, event_id: str):
    s.add(ProcessedMessage(message_id=event_id))
    try:
        s.commit()
    except IntegrityError:
        # même événement noté par un autre consumer
        s.rollback()


# sessionId arrive du navigateur : entier positif ou chaîne de chiffres
def parse_session_id(raw) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        session_id = raw
    elif isinstance(raw, str) and raw.strip().isdigit():
        session_id = int(raw.strip())
    else:
        return None
    return session_id if session_id > 0 else None


# Traite un message déjà décodé. Retourne un petit résumé du
# résultat (utile pour les logs et les tests), None si ignoré.
def handle_message(s: Session, msg: dict, clock=None, notifier=None) -> Optional[str]:
    etype = msg.get("type")
    if etype not in HANDLED:
        return None
    payload = msg.get("payload") or {}
    raw_session_id = payload.get("sessionId")
    user_id = payload.get("userId")
    if raw_session_id is None or not user_id:
        logger.warning("[consumer] skipping %s (missing sessionId/userId)", etype)
        return None
    session_id = parse_session_id(raw_session_id)
    if session_id is None:
        logger.warning("[consumer] skipping %s (bad sessionId %r)", etype, raw_session_id)
        return None

    # Si un messageId est fourni on l’utilise sinon on construit "Type:sessionId:userId"
    message_id = msg.get("messageId") or f"{etype}:{session_id}:{user_id}"
    if event_seen(s, message_id):
        logger.info("[consumer] %s already processed, skipping", message_id)
        return "duplicate"

    service = LiveSessionService(s, clock=clock, notifier=notifier)
    try:
        if etype == START_SESSION:
            service.start_session(str(user_id), session_id)
            outcome = "started"
        else:
            result = service.end_session(str(user_id), session_id)
            if not result.success:
                outcome = "failed"
            elif result.already_terminal:
                outcome = "already-ended"
            else:
                outcome = "ended"
    except EngineError as e:
        logger.warning("[consumer] %s rejected for session %s: %s", etype, session_id, e)
        outcome = "rejected"

    remember_event(s, message_id)
    logger.info("[consumer] %s session=%s -> %s", etype, session_id, outcome)
    return outcome


# Callback exécuté à chaque message reçu depuis RabbitMQ
def on_message(ch, method, properties, body):
    try:
        msg = json.loads(body)
    except ValueError as e:
        logger.warning("[consumer] bad payload: %s", e)
        return
    with Session(get_engine()) as s:
        handle_message(s, msg, notifier=RabbitNotifier())


#  Boucle de connexion + consommation RabbitMQ
def start_consumer():
    # petit retry loop pour attendre RabbitMQ
    attempt = 0
    while True:
        try:
            logger.info("[consumer] connecting to rabbitmq at %s...", config.RABBITMQ_HOST)
            conn = pika.BlockingConnection(pika.ConnectionParameters(host=config.RABBITMQ_HOST, heartbeat=60))
            ch = conn.channel()
            # Déclare l'échange 'events' de type fanout (broadcast)
            ch.exchange_declare(exchange=EXCHANGE, exchange_type="fanout", durable=True)
            # Déclare une queue anonyme, exclusive à ce consumer
            q = ch.queue_declare(queue="", exclusive=True).method.queue
            ch.queue_bind(exchange=EXCHANGE, queue=q)
            logger.info("[consumer] bound to exchange '%s' queue='%s'. waiting for messages...", EXCHANGE, q)
            attempt = 0
            ch.basic_consume(queue=q, on_message_callback=on_message, auto_ack=True)
            ch.start_consuming()
        except Exception as e:
            attempt += 1
            wait = min(5 * attempt, 30)
            logger.error("[consumer] connection error: %s, retrying in %ss", e, wait)
            time.sleep(wait)
