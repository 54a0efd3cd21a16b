# ============================================================
# notifications.py — Notifications renvoyées comme données
# ------------------------------------------------------------
# Le moteur ne parle jamais directement à un transport : chaque
# opération renvoie une liste de Notification (destinataire,
# message). La façade (service.py) les confie ensuite à un
# Notifier, en mode "fire-and-forget" : une erreur d’envoi est
# loggée puis ignorée, elle ne change jamais le résultat.
# ============================================================
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

# Types d’événements
SESSION_INVITE = "SessionInvite"
SESSION_STATUS_CHANGED = "SessionStatusChanged"
SESSION_CANCELLED = "SessionCancelled"
SESSION_ENDED = "SessionEnded"


@dataclass(frozen=True)
class Notification:
    recipient: str
    event: str
    message: str
    session_id: Optional[int] = None

    def as_payload(self) -> dict:
        return {
            "userId": self.recipient,
            "event": self.event,
            "message": self.message,
            "sessionId": self.session_id,
        }


# Hôte + participants acceptés
def to_everyone(session, event: str, message: str) -> List[Notification]:
    recipients = [session.host_id] + [uid for uid in session.accepted_ids if uid != session.host_id]
    return [Notification(uid, event, message, session.id) for uid in recipients]


class NullNotifier:
    def notify(self, user_id: str, message: Notification):
        pass


def dispatch(notifier, notifications: Iterable[Notification]) -> int:
    sent = 0
    for n in notifications:
        try:
            notifier.notify(n.recipient, n)
            sent += 1
        except Exception:
            logger.warning("notification %s to %s dropped", n.event, n.recipient, exc_info=True)
    return sent
