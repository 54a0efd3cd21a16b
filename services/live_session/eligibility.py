# ============================================================
# eligibility.py — Seuil de solde pour participer
# ------------------------------------------------------------
# Pour accepter une invitation ou rejoindre une session, un
# participant doit avoir au moins 40 % de la durée prévue en
# crédits. L’hôte n’a besoin que d’un portefeuille existant
# (animer une session ne coûte rien).
# ============================================================
from decimal import Decimal

from . import config
from .errors import InsufficientCreditsError
from .ledger import Ledger


def required_credits(duration_minutes: int, ratio: float = None) -> int:
    r = Decimal(str(config.ELIGIBILITY_RATIO if ratio is None else ratio))
    return int(Decimal(duration_minutes) * r)


def is_eligible(ledger: Ledger, user_id: str, duration_minutes: int) -> bool:
    return ledger.has_enough(user_id, required_credits(duration_minutes))


def ensure_eligible(ledger: Ledger, user_id: str, duration_minutes: int):
    required = required_credits(duration_minutes)
    if not ledger.has_enough(user_id, required):
        raise InsufficientCreditsError(f"at least {required} credits are required to take part in this session")


def ensure_host_wallet(ledger: Ledger, host_id: str):
    ledger.check_and_reset(host_id)
