# ============================================================
# service.py — Façade du moteur Live Session
# ------------------------------------------------------------
# Point d’entrée unique pour l’API et le consumer RabbitMQ.
# Assemble, pour une Session DB (unité de travail) :
#   Clock → Ledger → ConflictDetector → SessionStateMachine
#         → SettlementEngine → LazySync
# puis envoie les notifications produites par chaque opération
# au Notifier (erreurs d’envoi ignorées).
# Personne d’autre ne modifie directement le statut d’une session.
# ============================================================
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlmodel import Session

from .clock import SystemClock
from .conflicts import ConflictDetector
from .eligibility import ensure_eligible
from .errors import JoinRejectedError, NotFoundError, NotParticipantError, ValidationError
from .lazy_sync import LazySync, SweepReport
from .ledger import Ledger
from .models import (
    ACTIVE_STATUSES, LIVE, SCHEDULED, TERMINAL_STATUSES,
    LedgerEntryRead, LiveSession, SessionRead, WalletSummary,
)
from .notifications import NullNotifier, dispatch
from .repository import SessionRepository
from .settlement import SettlementEngine, SettlementResult
from .state_machine import SessionStateMachine

logger = logging.getLogger(__name__)

UPCOMING = "upcoming"
HISTORY = "history"
ALL = "all"


@dataclass
class JoinInfo:
    session: SessionRead
    is_host: bool


class LiveSessionService:
    def __init__(self, db: Session, clock=None, notifier=None):
        self.db = db
        self.clock = clock or SystemClock()
        self.notifier = notifier or NullNotifier()
        self.sessions = SessionRepository(db)
        self.ledger = Ledger(db, self.clock)
        self.conflicts = ConflictDetector(self.sessions)
        self.machine = SessionStateMachine(self.sessions, self.ledger, self.conflicts, self.clock)
        self.settlement = SettlementEngine(self.sessions, self.machine, self.ledger, self.clock)
        self.sync = LazySync(self.sessions, self.machine, self.settlement, self.clock)

    def _notify(self, notes):
        dispatch(self.notifier, notes)

    def _load(self, session_id: int) -> LiveSession:
        s = self.sessions.get(session_id)
        if s is None:
            raise NotFoundError("Session not found")
        return s

    def _reconciled(self, s: LiveSession, promote: bool = True) -> LiveSession:
        s, notes = self.sync.reconcile_safely(s, promote)
        self._notify(notes)
        return s

    # Chargement + synchro : une session expirée que personne n’a relue
    # est close avant d’être modifiée.
    def _load_current(self, session_id: int, promote: bool = True) -> LiveSession:
        return self._reconciled(self._load(session_id), promote)

    # ------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------
    def create_session(self, host_id: str, start: datetime, duration_minutes: int,
                       invitees: Optional[Sequence[str]] = None, title: Optional[str] = None,
                       purpose: Optional[str] = None) -> SessionRead:
        s, notes = self.machine.create(host_id, start, duration_minutes, invitees, title, purpose)
        self._notify(notes)
        return SessionRead.from_row(s)

    def respond_to_invite(self, participant_id: str, session_id: int, action: str) -> SessionRead:
        action = (action or "").strip().lower()
        if action not in ("accept", "decline"):
            raise ValidationError("action must be 'accept' or 'decline'")
        s = self._load_current(session_id)
        if action == "accept":
            s = self.machine.accept_invite(participant_id, s)
        else:
            s = self.machine.remove_self(participant_id, s)
        return SessionRead.from_row(s)

    def leave_session(self, participant_id: str, session_id: int) -> SessionRead:
        s = self.machine.remove_self(participant_id, self._load_current(session_id))
        return SessionRead.from_row(s)

    def start_session(self, host_id: str, session_id: int) -> SessionRead:
        s, notes = self.machine.start(host_id, self._load_current(session_id, promote=False))
        self._notify(notes)
        return SessionRead.from_row(s)

    def cancel_session(self, host_id: str, session_id: int) -> SessionRead:
        s, notes = self.machine.cancel(host_id, self._load_current(session_id, promote=False))
        self._notify(notes)
        return SessionRead.from_row(s)

    def end_session(self, host_id: str, session_id: int) -> SettlementResult:
        s = self._load(session_id)
        self.machine.authorize_host(host_id, s, "end")
        result = self.settlement.terminate(s.id)
        self._notify(result.notifications)
        return result

    # ------------------------------------------------------------
    # Rejoindre la salle
    # ------------------------------------------------------------
    # - session terminée/annulée : refus
    # - plus de 15 min avant le début prévu : refus
    # - l’hôte peut entrer dès que la fenêtre est ouverte
    # - un participant doit avoir accepté, la session doit être
    #   live et son solde doit passer le seuil
    # ------------------------------------------------------------
    def join_session(self, user_id: str, session_id: int) -> JoinInfo:
        s = self._load_current(session_id)
        if s.is_terminal:
            raise JoinRejectedError("This session has already ended or been cancelled.")

        is_host = s.host_id == user_id
        if not is_host and user_id not in s.invited_ids:
            raise NotParticipantError("Not authorized to join this session")
        if self.clock.now() < self.machine.join_opens_at(s):
            raise JoinRejectedError("Too early to join. Please wait.")
        if not is_host:
            if user_id not in s.accepted_ids:
                raise NotParticipantError("Accept the invitation before joining")
            if s.status != LIVE:
                raise JoinRejectedError("Session hasn't started yet. Please wait for the host.")
            ensure_eligible(self.ledger, user_id, s.duration_minutes)
        return JoinInfo(SessionRead.from_row(s), is_host)

    # ------------------------------------------------------------
    # Lectures (avec synchro paresseuse)
    # ------------------------------------------------------------
    def get_session(self, user_id: str, session_id: int) -> SessionRead:
        s = self._load(session_id)
        if s.host_id != user_id and user_id not in s.invited_ids:
            raise NotParticipantError("You are not part of this session")
        return SessionRead.from_row(self._reconciled(s))

    def list_sessions(self, user_id: str, filter: str = UPCOMING) -> List[SessionRead]:
        if filter not in (UPCOMING, HISTORY, ALL):
            raise ValidationError(f"unknown filter {filter!r}")
        # on fait avancer d’abord les sessions actives, puis on filtre
        for s in self.sessions.active_for_user(user_id):
            self._reconciled(s)

        if filter == UPCOMING:
            rows = self.sessions.for_user(user_id, ACTIVE_STATUSES)
        elif filter == HISTORY:
            rows = self.sessions.for_user(user_id, TERMINAL_STATUSES, newest_first=True)
        else:
            rows = self.sessions.for_user(user_id, newest_first=True)
        return [SessionRead.from_row(s) for s in rows]

    def list_pending_invites(self, user_id: str) -> List[SessionRead]:
        out = []
        for s in self.sessions.pending_invites(user_id):
            s = self._reconciled(s)
            if s.status == SCHEDULED:
                out.append(SessionRead.from_row(s))
        return out

    def sweep(self) -> SweepReport:
        report = self.sync.sweep()
        self._notify(report.notifications)
        return report

    # ------------------------------------------------------------
    # Portefeuille
    # ------------------------------------------------------------
    def get_wallet_summary(self, user_id: str) -> WalletSummary:
        return self.ledger.summary(user_id)

    def get_wallet_history(self, user_id: str) -> List[LedgerEntryRead]:
        return [LedgerEntryRead.from_row(e) for e in self.ledger.history(user_id)]
