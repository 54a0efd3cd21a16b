# ============================================================
# repository.py — Accès aux données Live Session / Wallet
# ------------------------------------------------------------
# Ce module implémente le design pattern "Repository" pour les
# tables de sessions et de portefeuilles. Il isole la logique
# d’accès de la couche moteur.
#
# Règle importante : aucun changement de statut ni de solde ne
# se fait en "lire → modifier en mémoire → sauver". Tout passe
# par un UPDATE conditionnel dont on vérifie le rowcount, pour
# que deux appels concurrents ne puissent pas gagner tous les deux.
# ============================================================
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, exists, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from .models import (
    ACCEPTED, ACTIVE_STATUSES, CANCELLED, INVITED, RESET, SCHEDULED,
    LedgerEntry, LiveSession, SessionParticipant, Wallet,
)


# SessionRepository
# Fournit les lectures et les écritures conditionnelles sur LiveSession
# et SessionParticipant. Utilisé par le moteur, l’API et le consumer.
class SessionRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, s: LiveSession, invitees: Sequence[str], now: datetime) -> LiveSession:
        self.session.add(s)
        self.session.flush()
        for user_id in invitees:
            self.session.add(SessionParticipant(session_id=s.id, user_id=user_id, invited_at=now))
        self.session.commit()
        self.session.refresh(s)
        return s

    def get(self, session_id: int) -> Optional[LiveSession]:
        return self.session.exec(select(LiveSession).where(LiveSession.id == session_id)).first()

    # Sessions où l’utilisateur est hôte ou participant accepté
    def _involving(self, user_id: str):
        accepted = select(SessionParticipant.session_id).where(
            SessionParticipant.user_id == user_id,
            SessionParticipant.status == ACCEPTED,
        )
        return or_(LiveSession.host_id == user_id, col(LiveSession.id).in_(accepted))

    # Requête de chevauchement : sessions actives de l’utilisateur qui
    # commencent avant `starts_before` (filtre grossier, le calcul fin
    # des intervalles tamponnés est fait dans conflicts.py)
    def active_for_user(self, user_id: str, starts_before: Optional[datetime] = None,
                        exclude_session_id: Optional[int] = None) -> List[LiveSession]:
        stmt = select(LiveSession).where(
            col(LiveSession.status).in_(ACTIVE_STATUSES),
            self._involving(user_id),
        )
        if starts_before is not None:
            stmt = stmt.where(LiveSession.scheduled_start < starts_before)
        if exclude_session_id is not None:
            stmt = stmt.where(LiveSession.id != exclude_session_id)
        return list(self.session.exec(stmt).all())

    def for_user(self, user_id: str, statuses: Optional[Sequence[str]] = None,
                 newest_first: bool = False) -> List[LiveSession]:
        stmt = select(LiveSession).where(self._involving(user_id))
        if statuses:
            stmt = stmt.where(col(LiveSession.status).in_(statuses))
        order = col(LiveSession.scheduled_start)
        stmt = stmt.order_by(order.desc() if newest_first else order.asc())
        return list(self.session.exec(stmt).all())

    def pending_invites(self, user_id: str) -> List[LiveSession]:
        stmt = (
            select(LiveSession)
            .join(SessionParticipant)
            .where(
                SessionParticipant.user_id == user_id,
                SessionParticipant.status == INVITED,
                LiveSession.status == SCHEDULED,
            )
            .order_by(col(LiveSession.scheduled_start).asc())
        )
        return list(self.session.exec(stmt).all())

    # Sessions non terminées dont l’heure de début est passée
    def due(self, now: datetime) -> List[LiveSession]:
        stmt = select(LiveSession).where(
            col(LiveSession.status).in_(ACTIVE_STATUSES),
            LiveSession.scheduled_start <= now,
        )
        return list(self.session.exec(stmt).all())

    # ------------------------------------------------------------
    # Écritures conditionnelles (compare-and-set)
    # ------------------------------------------------------------
    # transition() ne modifie la ligne que si le statut courant est
    # encore dans `from_statuses`. Retourne True si on a gagné.
    # ------------------------------------------------------------
    def transition(self, session_id: int, from_statuses: Sequence[str], **values) -> bool:
        stmt = (
            update(LiveSession)
            .where(LiveSession.id == session_id, col(LiveSession.status).in_(from_statuses))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount == 1

    def _still_active(self, session_id: int):
        return exists().where(LiveSession.id == session_id, col(LiveSession.status).in_(ACTIVE_STATUSES))

    def accept(self, session_id: int, user_id: str, now: datetime) -> bool:
        stmt = (
            update(SessionParticipant)
            .where(
                SessionParticipant.session_id == session_id,
                SessionParticipant.user_id == user_id,
                SessionParticipant.status == INVITED,
                self._still_active(session_id),
            )
            .values(status=ACCEPTED, responded_at=now)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount == 1

    def remove_participant(self, session_id: int, user_id: str) -> bool:
        stmt = (
            delete(SessionParticipant)
            .where(
                SessionParticipant.session_id == session_id,
                SessionParticipant.user_id == user_id,
                self._still_active(session_id),
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount == 1

    # Les sessions annulées sans aucune acceptation peuvent être supprimées
    def purge_cancelled(self) -> int:
        accepted = select(SessionParticipant.session_id).where(SessionParticipant.status == ACCEPTED)
        ids = list(self.session.exec(
            select(LiveSession.id).where(
                LiveSession.status == CANCELLED,
                col(LiveSession.id).not_in(accepted),
            )
        ).all())
        if not ids:
            return 0
        self.session.execute(
            delete(SessionParticipant)
            .where(col(SessionParticipant.session_id).in_(ids))
            .execution_options(synchronize_session=False)
        )
        self.session.execute(
            delete(LiveSession)
            .where(col(LiveSession.id).in_(ids), LiveSession.status == CANCELLED)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return len(ids)


# WalletRepository
# Portefeuilles + journal. Chaque mouvement de solde et son écriture
# de journal sont commités dans la même transaction.
class WalletRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, owner_id: str) -> Optional[Wallet]:
        return self.session.exec(select(Wallet).where(Wallet.owner_id == owner_id)).first()

    # Retourne False si un autre appel a créé le portefeuille entre-temps
    def create(self, wallet: Wallet, entry: LedgerEntry) -> bool:
        self.session.add(wallet)
        try:
            self.session.flush()
        except IntegrityError:
            self.session.rollback()
            return False
        entry.wallet_id = wallet.id
        self.session.add(entry)
        self.session.commit()
        return True

    def _apply(self, stmt, entry: LedgerEntry) -> bool:
        result = self.session.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount != 1:
            self.session.rollback()
            return False
        self.session.add(entry)
        self.session.commit()
        return True

    # Reset seulement si personne n’a touché au portefeuille depuis la lecture
    def reset(self, wallet: Wallet, now: datetime, next_reset: datetime, entry: LedgerEntry) -> bool:
        stmt = (
            update(Wallet)
            .where(
                Wallet.id == wallet.id,
                Wallet.next_reset_at == wallet.next_reset_at,
                Wallet.balance == wallet.balance,
            )
            .values(balance=Wallet.weekly_limit, last_reset_at=now, next_reset_at=next_reset)
        )
        return self._apply(stmt, entry)

    # Décrément atomique, refusé si le solde ne suffit pas
    def debit(self, wallet_id: int, amount: int, entry: LedgerEntry) -> bool:
        stmt = (
            update(Wallet)
            .where(Wallet.id == wallet_id, Wallet.balance >= amount)
            .values(balance=Wallet.balance - amount)
        )
        return self._apply(stmt, entry)

    def credit(self, wallet_id: int, amount: int, entry: LedgerEntry) -> bool:
        stmt = (
            update(Wallet)
            .where(Wallet.id == wallet_id)
            .values(balance=Wallet.balance + amount)
        )
        return self._apply(stmt, entry)

    def entries(self, owner_id: str, newest_first: bool = True) -> List[LedgerEntry]:
        order = col(LedgerEntry.id)
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.owner_id == owner_id)
            .order_by(order.desc() if newest_first else order.asc())
        )
        return list(self.session.exec(stmt).all())

    def totals(self, owner_id: str) -> Dict[str, int]:
        rows = self.session.exec(
            select(LedgerEntry.kind, func.sum(LedgerEntry.amount))
            .where(LedgerEntry.owner_id == owner_id)
            .group_by(LedgerEntry.kind)
        ).all()
        return {kind: int(total or 0) for kind, total in rows}

    def entries_since_last_reset(self, wallet_id: int) -> List[LedgerEntry]:
        last_reset = select(func.max(LedgerEntry.id)).where(
            LedgerEntry.wallet_id == wallet_id,
            LedgerEntry.kind == RESET,
        ).scalar_subquery()
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.wallet_id == wallet_id, LedgerEntry.id >= last_reset)
            .order_by(col(LedgerEntry.id).asc())
        )
        return list(self.session.exec(stmt).all())
