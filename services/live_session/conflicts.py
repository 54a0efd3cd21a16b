# ============================================================
# conflicts.py — Détection de chevauchement de sessions
# ------------------------------------------------------------
# Un utilisateur ne peut pas être dans deux sessions actives
# (scheduled/live) qui se chevauchent. Chaque session existante
# est élargie d’un tampon de 5 min avant et après :
#
#     [start - B, start + durée + B]
#
# Conflit si : candidat.start < existant.fin  ET  candidat.fin > existant.début
# Vérifié à la création (hôte) et à l’acceptation (participant),
# jamais à l’envoi de l’invitation.
# ============================================================
from datetime import datetime, timedelta
from typing import Optional, Tuple

from . import config
from .repository import SessionRepository


def buffered_interval(start: datetime, duration_minutes: int,
                      buffer_minutes: int = None) -> Tuple[datetime, datetime]:
    b = timedelta(minutes=config.CONFLICT_BUFFER_MINUTES if buffer_minutes is None else buffer_minutes)
    return start - b, start + timedelta(minutes=duration_minutes) + b


# Intersection d’intervalles semi-ouverts
def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


class ConflictDetector:
    def __init__(self, sessions: SessionRepository, buffer_minutes: int = None):
        self.sessions = sessions
        self.buffer_minutes = config.CONFLICT_BUFFER_MINUTES if buffer_minutes is None else buffer_minutes

    def has_conflict(self, user_id: str, candidate_start: datetime, candidate_duration: int,
                     exclude_session_id: Optional[int] = None) -> bool:
        candidate_end = candidate_start + timedelta(minutes=candidate_duration)
        # une session qui commence après candidate_end + B ne peut pas chevaucher
        horizon = candidate_end + timedelta(minutes=self.buffer_minutes)
        for s in self.sessions.active_for_user(user_id, starts_before=horizon,
                                               exclude_session_id=exclude_session_id):
            b_start, b_end = buffered_interval(s.scheduled_start, s.duration_minutes, self.buffer_minutes)
            if intervals_overlap(candidate_start, candidate_end, b_start, b_end):
                return True
        return False
