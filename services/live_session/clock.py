# ============================================================
# clock.py — Source de temps injectable
# ------------------------------------------------------------
# Tout le moteur travaille en UTC "naïf" (sans tzinfo), c’est
# ce qui est stocké en base. Les dates avec fuseau sont converties
# en UTC à l’entrée.
#   - SystemClock : horloge réelle
#   - FixedClock  : horloge figée pour les tests
# ============================================================
from datetime import datetime, timedelta, timezone
from typing import Optional


def to_utc(dt: datetime) -> datetime:
    # sans tzinfo on suppose déjà de l’UTC
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def as_aware(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc)


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock:
    def __init__(self, at: datetime):
        self.current = to_utc(at)

    def now(self) -> datetime:
        return self.current

    def set(self, at: datetime):
        self.current = to_utc(at)

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current
