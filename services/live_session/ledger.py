# ============================================================
# ledger.py — Portefeuille de crédits-temps + journal
# ------------------------------------------------------------
# Chaque utilisateur a un solde en minutes, rechargé chaque
# semaine. Il n’y a pas de timer : la recharge est vérifiée
# paresseusement au début de chaque opération (check_and_reset).
#
#   - spend : débit participant (refusé si solde insuffisant)
#   - earn  : crédit hôte (sans plafond, voir DESIGN.md)
#   - reset : retour au plafond hebdomadaire
#
# Toutes les écritures du solde sont des UPDATE atomiques
# (repository.py), jamais un read-modify-write en mémoire.
# ============================================================
import logging
from datetime import timedelta
from typing import List

from sqlmodel import Session

from . import config
from .clock import as_aware
from .errors import ConflictError, InsufficientCreditsError, NotFoundError, ValidationError
from .models import (
    EARN, RESET, ROLE_HOST, ROLE_PARTICIPANT, ROLE_SYSTEM, SPEND,
    LedgerEntry, Wallet, WalletSummary,
)
from .repository import WalletRepository

logger = logging.getLogger(__name__)

# Nombre d’essais du reset conditionnel quand le portefeuille bouge en même temps
MAX_RESET_ATTEMPTS = 5


class Ledger:
    def __init__(self, session: Session, clock, initial_credits: int = None, reset_period_days: int = None):
        self.wallets = WalletRepository(session)
        self.clock = clock
        self.initial_credits = config.INITIAL_CREDITS if initial_credits is None else initial_credits
        self.reset_period = timedelta(days=config.RESET_PERIOD_DAYS if reset_period_days is None else reset_period_days)

    @staticmethod
    def _amount(minutes) -> int:
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise ValidationError(f"amount must be a positive number of minutes, got {minutes!r}")
        return minutes

    def create_wallet(self, user_id: str) -> Wallet:
        now = self.clock.now()
        wallet = Wallet(
            owner_id=user_id,
            balance=self.initial_credits,
            weekly_limit=self.initial_credits,
            last_reset_at=now,
            next_reset_at=now + self.reset_period,
        )
        entry = LedgerEntry(
            owner_id=user_id,
            kind=RESET,
            amount=self.initial_credits,
            role=ROLE_SYSTEM,
            balance_after=self.initial_credits,
            created_at=now,
        )
        if not self.wallets.create(wallet, entry):
            # un autre appel l’a créé avant nous
            return self.wallets.get(user_id)
        logger.info("wallet created for user=%s balance=%s", user_id, self.initial_credits)
        return wallet

    # ------------------------------------------------------------
    # Recharge hebdomadaire
    # ------------------------------------------------------------
    # Si l’échéance est passée : solde = plafond, prochaine échéance
    # dans 7 jours, et une écriture "reset" avec le solde avant/après.
    # Le reset est conditionnel : si un spend/earn passe entre la
    # lecture et l’écriture, on relit et on recommence.
    # ------------------------------------------------------------
    def check_and_reset(self, user_id: str) -> Wallet:
        for _ in range(MAX_RESET_ATTEMPTS):
            wallet = self.wallets.get(user_id)
            if wallet is None:
                wallet = self.create_wallet(user_id)
            now = self.clock.now()
            if now < wallet.next_reset_at:
                return wallet

            before = wallet.balance
            entry = LedgerEntry(
                wallet_id=wallet.id,
                owner_id=user_id,
                kind=RESET,
                amount=wallet.weekly_limit,
                role=ROLE_SYSTEM,
                balance_before=before,
                balance_after=wallet.weekly_limit,
                created_at=now,
            )
            if self.wallets.reset(wallet, now, now + self.reset_period, entry):
                logger.info("weekly reset for user=%s balance %s -> %s", user_id, before, wallet.weekly_limit)
                return wallet
        raise ConflictError(f"wallet of {user_id} is being updated concurrently, retry")

    def has_enough(self, user_id: str, required_minutes: int) -> bool:
        return self.check_and_reset(user_id).balance >= required_minutes

    def spend(self, user_id: str, session_id: int, duration_minutes: int) -> LedgerEntry:
        amount = self._amount(duration_minutes)
        wallet = self.check_and_reset(user_id)
        entry = LedgerEntry(
            wallet_id=wallet.id,
            owner_id=user_id,
            session_id=session_id,
            kind=SPEND,
            amount=amount,
            role=ROLE_PARTICIPANT,
            created_at=self.clock.now(),
        )
        if not self.wallets.debit(wallet.id, amount, entry):
            raise InsufficientCreditsError(
                f"user {user_id} has {wallet.balance} credits, {amount} required"
            )
        return entry

    def earn(self, user_id: str, session_id: int, duration_minutes: int) -> LedgerEntry:
        amount = self._amount(duration_minutes)
        wallet = self.check_and_reset(user_id)
        entry = LedgerEntry(
            wallet_id=wallet.id,
            owner_id=user_id,
            session_id=session_id,
            kind=EARN,
            amount=amount,
            role=ROLE_HOST,
            created_at=self.clock.now(),
        )
        if not self.wallets.credit(wallet.id, amount, entry):
            raise NotFoundError(f"wallet of {user_id} not found")
        return entry

    def summary(self, user_id: str) -> WalletSummary:
        wallet = self.check_and_reset(user_id)
        totals = self.wallets.totals(user_id)
        return WalletSummary(
            balance=wallet.balance,
            total_earned=totals.get(EARN, 0),
            total_spent=totals.get(SPEND, 0),
            weekly_limit=wallet.weekly_limit,
            last_reset=as_aware(wallet.last_reset_at),
            next_reset=as_aware(wallet.next_reset_at),
        )

    def history(self, user_id: str) -> List[LedgerEntry]:
        self.check_and_reset(user_id)
        return self.wallets.entries(user_id)

    # Solde recalculé : dernier reset + gains - dépenses depuis
    def expected_balance(self, user_id: str) -> int:
        wallet = self.wallets.get(user_id)
        if wallet is None:
            raise NotFoundError(f"wallet of {user_id} not found")
        entries = self.wallets.entries_since_last_reset(wallet.id)
        if not entries:
            raise NotFoundError(f"no reset entry for wallet of {user_id}")
        first = entries[0]
        balance = first.balance_after if first.balance_after is not None else first.amount
        for e in entries[1:]:
            if e.kind == EARN:
                balance += e.amount
            elif e.kind == SPEND:
                balance -= e.amount
        return balance

    def audit(self, user_id: str) -> bool:
        expected = self.expected_balance(user_id)
        actual = self.wallets.get(user_id).balance
        if expected != actual:
            logger.warning("ledger mismatch for user=%s expected=%s actual=%s", user_id, expected, actual)
        return expected == actual
