# ============================================================
# state_machine.py — Cycle de vie d’une session
# ------------------------------------------------------------
# Seule autorité sur le statut d’une session :
#
#     scheduled → live → ended
#     scheduled → cancelled
#     scheduled → ended   (uniquement via settlement : session
#                          expirée ou terminée sans démarrage)
#
# ended et cancelled sont terminaux, rien n’en ressort.
# Les vérifications de rôle (hôte / participant) sont faites ici
# et nulle part ailleurs. Chaque écriture de statut est un UPDATE
# conditionnel sur le statut attendu (repository.transition).
# ============================================================
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from . import config
from .clock import to_utc
from .conflicts import ConflictDetector
from .eligibility import ensure_eligible, ensure_host_wallet, is_eligible
from .errors import (
    ConflictError, InvalidTransitionError, NotHostError, NotParticipantError,
    ValidationError,
)
from .ledger import Ledger
from .models import ACTIVE_STATUSES, CANCELLED, ENDED, LIVE, SCHEDULED, LiveSession
from .notifications import (
    SESSION_CANCELLED, SESSION_INVITE, SESSION_STATUS_CHANGED, Notification, to_everyone,
)
from .repository import SessionRepository

logger = logging.getLogger(__name__)

TRANSITIONS = {
    SCHEDULED: (LIVE, CANCELLED, ENDED),
    LIVE: (ENDED,),
    ENDED: (),
    CANCELLED: (),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


class SessionStateMachine:
    def __init__(self, sessions: SessionRepository, ledger: Ledger, conflicts: ConflictDetector, clock):
        self.sessions = sessions
        self.ledger = ledger
        self.conflicts = conflicts
        self.clock = clock

    # ------------------------------------------------------------
    # Contrôles communs
    # ------------------------------------------------------------
    @staticmethod
    def authorize_host(user_id: str, s: LiveSession, action: str):
        if s.host_id != user_id:
            raise NotHostError(f"Only the host can {action} this session")

    @staticmethod
    def _ensure_not_terminal(s: LiveSession):
        if s.is_terminal:
            raise InvalidTransitionError(f"session {s.id} is already {s.status}")

    def _reload(self, s: LiveSession) -> LiveSession:
        self.sessions.session.refresh(s)
        return s

    @staticmethod
    def _normalize_invitees(host_id: str, invitees: Optional[Sequence[str]]) -> List[str]:
        seen = []
        for uid in invitees or []:
            uid = str(uid).strip()
            if not uid or uid in seen:
                continue
            if uid == host_id:
                raise ValidationError("The host cannot invite themselves")
            seen.append(uid)
        if len(seen) > config.MAX_PARTICIPANTS:
            raise ValidationError(f"Max {config.MAX_PARTICIPANTS} participants allowed")
        return seen

    # ------------------------------------------------------------
    # Création
    # ------------------------------------------------------------
    # 1) validation des champs
    # 2) pas de chevauchement pour l’hôte
    # 3) l’hôte doit avoir un portefeuille (créé si absent)
    # 4) persistance en "scheduled" + invitations
    # Seuls les invités qui passent déjà le seuil de solde reçoivent
    # une notification, mais tous sont enregistrés comme invités.
    # ------------------------------------------------------------
    def create(self, host_id: str, start: datetime, duration_minutes: int,
               invitees: Optional[Sequence[str]] = None, title: Optional[str] = None,
               purpose: Optional[str] = None) -> Tuple[LiveSession, List[Notification]]:
        if not host_id or start is None or duration_minutes is None:
            raise ValidationError("Missing required fields")
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise ValidationError("Duration must be a whole number of minutes")
        if not config.MIN_DURATION_MINUTES <= duration_minutes <= config.MAX_DURATION_MINUTES:
            raise ValidationError(
                f"Duration must be between {config.MIN_DURATION_MINUTES} "
                f"and {config.MAX_DURATION_MINUTES} minutes"
            )
        start = to_utc(start)
        invited = self._normalize_invitees(host_id, invitees)

        if self.conflicts.has_conflict(host_id, start, duration_minutes):
            raise ConflictError("You already have a session scheduled during this time.")
        ensure_host_wallet(self.ledger, host_id)

        s = LiveSession(
            host_id=host_id,
            title=(title or "").strip(),
            purpose=(purpose or "").strip(),
            scheduled_start=start,
            duration_minutes=duration_minutes,
            status=SCHEDULED,
            created_at=self.clock.now(),
        )
        s = self.sessions.create(s, invited, self.clock.now())
        logger.info("session %s created by %s for %s (%s min)", s.id, host_id, start.isoformat(), duration_minutes)

        notes = [
            Notification(uid, SESSION_INVITE, f'You are invited to "{s.label}" by {host_id}.', s.id)
            for uid in invited
            if is_eligible(self.ledger, uid, duration_minutes)
        ]
        return s, notes

    # ------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------
    def accept_invite(self, participant_id: str, s: LiveSession) -> LiveSession:
        self._ensure_not_terminal(s)
        if participant_id not in s.invited_ids:
            raise NotParticipantError("You were not invited to this session")
        if participant_id in s.accepted_ids:
            return s

        if self.conflicts.has_conflict(participant_id, s.scheduled_start, s.duration_minutes,
                                       exclude_session_id=s.id):
            raise ConflictError("You already have a session scheduled during this time.")
        ensure_eligible(self.ledger, participant_id, s.duration_minutes)

        if not self.sessions.accept(s.id, participant_id, self.clock.now()):
            # perdu la course : session terminée ou invitation retirée entre-temps
            s = self._reload(s)
            self._ensure_not_terminal(s)
            if participant_id not in s.invited_ids:
                raise NotParticipantError("You were not invited to this session")
            return s
        logger.info("user %s accepted session %s", participant_id, s.id)
        return self._reload(s)

    def remove_self(self, participant_id: str, s: LiveSession) -> LiveSession:
        self._ensure_not_terminal(s)
        if participant_id not in s.invited_ids:
            raise NotParticipantError("You are not part of this session")
        if not self.sessions.remove_participant(s.id, participant_id):
            s = self._reload(s)
            self._ensure_not_terminal(s)
            return s
        logger.info("user %s left session %s", participant_id, s.id)
        return self._reload(s)

    # ------------------------------------------------------------
    # Transitions de statut
    # ------------------------------------------------------------
    def start(self, host_id: str, s: LiveSession) -> Tuple[LiveSession, List[Notification]]:
        self.authorize_host(host_id, s, "start")
        if not can_transition(s.status, LIVE):
            raise InvalidTransitionError(f"cannot start a {s.status} session")
        now = self.clock.now()
        if not self.sessions.transition(s.id, (SCHEDULED,), status=LIVE, actual_start=s.actual_start or now):
            s = self._reload(s)
            raise InvalidTransitionError(f"cannot start a {s.status} session")
        s = self._reload(s)
        logger.info("session %s started by host", s.id)
        return s, to_everyone(s, SESSION_STATUS_CHANGED, f'Session "{s.label}" is now LIVE')

    def cancel(self, host_id: str, s: LiveSession) -> Tuple[LiveSession, List[Notification]]:
        self.authorize_host(host_id, s, "cancel")
        if not can_transition(s.status, CANCELLED):
            raise InvalidTransitionError(f"cannot cancel a {s.status} session")
        if not self.sessions.transition(s.id, (SCHEDULED,), status=CANCELLED):
            s = self._reload(s)
            raise InvalidTransitionError(f"cannot cancel a {s.status} session")
        s = self._reload(s)
        logger.info("session %s cancelled by host", s.id)
        message = f'Session "{s.label}" has been cancelled.'
        notes = [Notification(uid, SESSION_CANCELLED, message, s.id) for uid in s.invited_ids]
        return s, notes

    # Passage automatique à "live" quand l’heure est venue (lazy_sync)
    def promote(self, s: LiveSession) -> Tuple[bool, List[Notification]]:
        if s.status != SCHEDULED:
            return False, []
        if not self.sessions.transition(s.id, (SCHEDULED,), status=LIVE, actual_start=s.actual_start or self.clock.now()):
            self._reload(s)
            return False, []
        s = self._reload(s)
        logger.info("session %s promoted to live", s.id)
        return True, to_everyone(s, SESSION_STATUS_CHANGED, f'Session "{s.label}" is now LIVE')

    # Écriture utilisée par settlement : une seule peut gagner
    def end(self, s: LiveSession, actual_start: datetime, actual_end: datetime) -> bool:
        return self.sessions.transition(
            s.id, ACTIVE_STATUSES,
            status=ENDED, actual_start=actual_start, actual_end=actual_end,
        )

    # Fenêtre d’accès : pas plus de 15 min avant le début prévu
    def join_opens_at(self, s: LiveSession) -> datetime:
        return s.scheduled_start - timedelta(minutes=config.JOIN_WINDOW_MINUTES)
