# ============================================================
# settlement.py — Clôture d’une session et règlement des crédits
# ------------------------------------------------------------
# terminate() est appelé par trois chemins indépendants :
#   - l’hôte qui termine la session (API)
#   - l’événement "live:endSession" du canal temps réel (consumer)
#   - la synchro paresseuse quand l’heure de fin est dépassée
# Il doit donc être idempotent : N appels, concurrents ou non,
# donnent une seule transition "ended" et un seul jeu d’écritures.
#
# 1️. session absente → échec ; déjà terminée → succès sans effet
# 2️. durée réelle = fin - (début réel ou début prévu), min 1 min
# 3️. UPDATE conditionnel status=ended (un seul appel peut gagner)
# 4️. débit de chaque participant accepté (échec loggé, on continue)
# 5️. crédit de l’hôte, même durée, quoi qu’il arrive au point 4
# 6️. notifications de fin pour l’hôte et les participants
# ============================================================
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .errors import EngineError
from .ledger import Ledger
from .models import LiveSession
from .notifications import SESSION_ENDED, Notification, to_everyone
from .repository import SessionRepository
from .state_machine import SessionStateMachine

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    success: bool
    session: Optional[LiveSession] = None
    error: Optional[str] = None
    already_terminal: bool = False
    duration_minutes: int = 0
    charged: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    host_earned: bool = False
    notifications: List[Notification] = field(default_factory=list)


# Arrondi "half up" en minutes, jamais moins d’une minute
def actual_duration_minutes(actual_start: datetime, actual_end: datetime) -> int:
    minutes = (actual_end - actual_start).total_seconds() / 60
    return max(1, math.floor(minutes + 0.5))


class SettlementEngine:
    def __init__(self, sessions: SessionRepository, machine: SessionStateMachine, ledger: Ledger, clock):
        self.sessions = sessions
        self.machine = machine
        self.ledger = ledger
        self.clock = clock

    def _rollback(self):
        self.sessions.session.rollback()

    def terminate(self, session_id: int) -> SettlementResult:
        try:
            s = self.sessions.get(session_id)
        except SQLAlchemyError as e:
            self._rollback()
            logger.exception("could not load session %s for settlement", session_id)
            return SettlementResult(False, error=str(e))
        if s is None:
            logger.error("session %s not found", session_id)
            return SettlementResult(False, error="Session not found")
        if s.is_terminal:
            return SettlementResult(True, session=s, already_terminal=True)

        actual_end = self.clock.now()
        actual_start = s.actual_start or s.scheduled_start
        duration = actual_duration_minutes(actual_start, actual_end)

        try:
            won = self.machine.end(s, actual_start, actual_end)
        except SQLAlchemyError as e:
            self._rollback()
            logger.exception("could not end session %s", session_id)
            return SettlementResult(False, error=str(e))
        self.sessions.session.refresh(s)
        if not won:
            logger.info("session %s already settled by another caller", session_id)
            return SettlementResult(True, session=s, already_terminal=True)

        logger.info("session %s ended, settling %s min", s.id, duration)
        result = SettlementResult(True, session=s, duration_minutes=duration)

        for participant_id in s.accepted_ids:
            try:
                self.ledger.spend(participant_id, s.id, duration)
                result.charged.append(participant_id)
            except EngineError as e:
                result.failed.append(participant_id)
                logger.warning("credit deduction failed for user %s on session %s: %s", participant_id, s.id, e)
            except SQLAlchemyError:
                self._rollback()
                result.failed.append(participant_id)
                logger.exception("credit deduction failed for user %s on session %s", participant_id, s.id)

        # l’hôte est payé pour le temps donné, pas pour le temps encaissé
        try:
            self.ledger.earn(s.host_id, s.id, duration)
            result.host_earned = True
        except EngineError as e:
            logger.warning("host credit earning failed for session %s: %s", s.id, e)
        except SQLAlchemyError:
            self._rollback()
            logger.exception("host credit earning failed for session %s", s.id)

        result.notifications = to_everyone(s, SESSION_ENDED, f'Session "{s.label}" has ended.')
        return result
