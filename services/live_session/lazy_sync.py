# ============================================================
# lazy_sync.py — Synchro du statut à la lecture
# ------------------------------------------------------------
# Aucun timer ne fait avancer les sessions : à chaque lecture
# (liste, détail, join) on compare l’heure courante au planning :
#   - fin prévue dépassée      → settlement.terminate()
#   - début atteint, scheduled → passage en live
# Une session que personne ne relit reste donc dans son dernier
# statut. sweep() permet de tout rattraper d’un coup ; l’app ne
# le lance en tâche de fond que si SWEEP_INTERVAL_SECONDS > 0.
# ============================================================
import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from sqlalchemy.exc import SQLAlchemyError

from .models import SCHEDULED, LiveSession
from .notifications import Notification
from .repository import SessionRepository
from .settlement import SettlementEngine
from .state_machine import SessionStateMachine

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    promoted: int = 0
    terminated: int = 0
    purged: int = 0
    notifications: List[Notification] = field(default_factory=list)


class LazySync:
    def __init__(self, sessions: SessionRepository, machine: SessionStateMachine,
                 settlement: SettlementEngine, clock):
        self.sessions = sessions
        self.machine = machine
        self.settlement = settlement
        self.clock = clock

    # promote=False : on ne fait que clore une session expirée (utilisé avant start)
    def reconcile(self, s: LiveSession, promote: bool = True) -> Tuple[LiveSession, List[Notification]]:
        if s.is_terminal:
            return s, []
        now = self.clock.now()
        if now > s.planned_end:
            logger.info("session %s expired, triggering termination", s.id)
            result = self.settlement.terminate(s.id)
            if result.success and result.session is not None:
                return result.session, result.notifications
            return s, []
        if promote and now >= s.scheduled_start and s.status == SCHEDULED:
            _, notes = self.machine.promote(s)
            return s, notes
        return s, []

    # Une panne de la base pendant la synchro ne doit pas casser la
    # lecture : on logge et on renvoie la session telle que lue.
    def reconcile_safely(self, s: LiveSession, promote: bool = True) -> Tuple[LiveSession, List[Notification]]:
        try:
            return self.reconcile(s, promote)
        except SQLAlchemyError:
            self.sessions.session.rollback()
            logger.warning("lazy sync failed for session %s", s.id, exc_info=True)
            return s, []

    def sweep(self, purge: bool = True) -> SweepReport:
        report = SweepReport()
        for s in self.sessions.due(self.clock.now()):
            before = s.status
            s, notes = self.reconcile_safely(s)
            if s.status != before:
                if s.is_terminal:
                    report.terminated += 1
                else:
                    report.promoted += 1
            report.notifications.extend(notes)
        if purge:
            report.purged = self.sessions.purge_cancelled()
        if report.promoted or report.terminated or report.purged:
            logger.info("sweep: promoted=%s terminated=%s purged=%s",
                        report.promoted, report.terminated, report.purged)
        return report
