# ============================================================
# publisher.py — Émission d'événements RabbitMQ
# ------------------------------------------------------------
# Ce module gère la publication des événements du service
# Live Session (SessionInvite, SessionStatusChanged,
# SessionCancelled, SessionEnded). Le service de notification
# et le canal temps réel les consomment pour prévenir les users.
# ============================================================
import json
import logging

import pika

from . import config

logger = logging.getLogger(__name__)

EXCHANGE = "events"


# Cette méthode publie un message sur l’échange "events" en mode fanout :
#
#   - event_type : nom de l’événement
#   - payload    : contenu du message
#
# Tous les consommateurs liés à l’échange reçoivent le message.

def publish_event(event_type: str, payload: dict):
    # Ouvre une connexion vers RabbitMQ
    conn = pika.BlockingConnection(pika.ConnectionParameters(host=config.RABBITMQ_HOST))
    try:
        ch = conn.channel()
        # durable=True pour survivre aux redémarrages RabbitMQ
        ch.exchange_declare(exchange=EXCHANGE, exchange_type="fanout", durable=True)
        message = {"type": event_type, "payload": payload}
        ch.basic_publish(exchange=EXCHANGE, routing_key="", body=json.dumps(message))
        logger.info("[event] %s %s", event_type, payload)
    finally:
        conn.close()


# Notifier branché sur RabbitMQ : une notification = un événement.
# Les erreurs remontent, c’est dispatch() qui les ignore.
class RabbitNotifier:
    def __init__(self, publish=publish_event):
        self.publish = publish

    def notify(self, user_id: str, message):
        payload = message.as_payload()
        payload["userId"] = user_id
        self.publish(message.event, payload)
