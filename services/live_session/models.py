# ============================================================
# models.py — Modèles de données SQLModel (Live Session Service)
# ------------------------------------------------------------
# Définit les tables de la base PostgreSQL :
#   1️. LiveSession : une session planifiée hôte + participants
#   2️. SessionParticipant : invitation / acceptation d’un user
#   3️. Wallet : solde de crédits-temps d’un utilisateur
#   4️. LedgerEntry : journal append-only des mouvements
#   5️. ProcessedMessage : trace les messages RabbitMQ déjà traités
# Plus les schémas (non-table) échangés par l’API.
# ============================================================
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import CheckConstraint, DateTime, UniqueConstraint
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .clock import as_aware

# Statuts de session : scheduled → live → ended, ou scheduled → cancelled
SCHEDULED = "scheduled"
LIVE = "live"
ENDED = "ended"
CANCELLED = "cancelled"
ACTIVE_STATUSES = (SCHEDULED, LIVE)
TERMINAL_STATUSES = (ENDED, CANCELLED)

# Statuts d’un participant
INVITED = "invited"
ACCEPTED = "accepted"

# Types d’écritures du journal et rôle de l’acteur
RESET = "reset"
EARN = "earn"
SPEND = "spend"
ROLE_SYSTEM = "system"
ROLE_HOST = "host"
ROLE_PARTICIPANT = "participant"


# Horodatages en UTC naïf, colonnes DateTime sans fuseau (sa_type=DateTime)
def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ------------------------------------------------------------
# LiveSession
# ------------------------------------------------------------
# Réunion limitée dans le temps entre un hôte et ses invités :
#  - statut canonique (seuls state_machine / settlement l’écrivent)
#  - actual_start posé au premier démarrage effectif
#  - actual_end posé uniquement au passage à "ended"
# Les participants sont dans une table à part, l’ordre des id
# donne l’ordre d’invitation.
# ------------------------------------------------------------
class LiveSession(SQLModel, table=True):
    __tablename__ = "live_session"

    id: Optional[int] = Field(default=None, primary_key=True)
    host_id: str = Field(index=True)
    title: str = ""
    purpose: str = ""
    scheduled_start: datetime = Field(index=True, sa_type=DateTime)
    duration_minutes: int
    actual_start: Optional[datetime] = Field(default=None, sa_type=DateTime)
    actual_end: Optional[datetime] = Field(default=None, sa_type=DateTime)
    status: str = Field(default=SCHEDULED, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    participants: List["SessionParticipant"] = Relationship(
        back_populates="session",
        sa_relationship_kwargs={"order_by": "SessionParticipant.id", "cascade": "all, delete-orphan"},
    )

    @property
    def invited_ids(self) -> List[str]:
        return [p.user_id for p in self.participants]

    @property
    def accepted_ids(self) -> List[str]:
        return [p.user_id for p in self.participants if p.status == ACCEPTED]

    @property
    def planned_end(self) -> datetime:
        return self.scheduled_start + timedelta(minutes=self.duration_minutes)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def label(self) -> str:
        return self.title or f"#{self.id}"


class SessionParticipant(SQLModel, table=True):
    __tablename__ = "session_participant"
    __table_args__ = (UniqueConstraint("session_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: int = Field(foreign_key="live_session.id", index=True)
    user_id: str = Field(index=True)
    status: str = INVITED
    invited_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    responded_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    session: Optional[LiveSession] = Relationship(back_populates="participants")


# ------------------------------------------------------------
# Wallet
# ------------------------------------------------------------
# Un portefeuille par utilisateur, créé au premier besoin.
# Le solde ne change que via des UPDATE atomiques (ledger.py),
# la contrainte CHECK garantit qu’il ne passe jamais sous zéro.
# ------------------------------------------------------------
class Wallet(SQLModel, table=True):
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True, unique=True)
    balance: int
    weekly_limit: int
    last_reset_at: datetime = Field(sa_type=DateTime)
    next_reset_at: datetime = Field(sa_type=DateTime)


class LedgerEntry(SQLModel, table=True):
    __tablename__ = "ledger_entry"

    id: Optional[int] = Field(default=None, primary_key=True)
    wallet_id: int = Field(foreign_key="wallet.id", index=True)
    owner_id: str = Field(index=True)
    session_id: Optional[int] = Field(default=None, index=True)
    kind: str                                  # reset | earn | spend
    amount: int                                # minutes
    role: str                                  # system | host | participant
    balance_before: Optional[int] = None       # renseigné pour les resets
    balance_after: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class ProcessedMessage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    message_id: str = Field(index=True, unique=True)
    processed_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


# ------------------------------------------------------------
# Schémas d’échange (non persistés)
# ------------------------------------------------------------
class SessionRead(SQLModel):
    id: int
    host_id: str
    title: str
    purpose: str
    status: str
    scheduled_start: datetime
    duration_minutes: int
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    invited_ids: List[str] = Field(default_factory=list)
    accepted_ids: List[str] = Field(default_factory=list)
    created_at: datetime

    @classmethod
    def from_row(cls, s: LiveSession) -> "SessionRead":
        return cls(
            id=s.id,
            host_id=s.host_id,
            title=s.title,
            purpose=s.purpose,
            status=s.status,
            scheduled_start=as_aware(s.scheduled_start),
            duration_minutes=s.duration_minutes,
            actual_start=as_aware(s.actual_start),
            actual_end=as_aware(s.actual_end),
            invited_ids=s.invited_ids,
            accepted_ids=s.accepted_ids,
            created_at=as_aware(s.created_at),
        )


class SessionCreate(SQLModel):
    start: datetime
    duration_minutes: int
    invitees: List[str] = Field(default_factory=list)
    title: Optional[str] = None
    purpose: Optional[str] = None


class InviteResponse(SQLModel):
    action: str                                # accept | decline


class WalletSummary(SQLModel):
    balance: int
    total_earned: int
    total_spent: int
    weekly_limit: int
    last_reset: datetime
    next_reset: datetime


class LedgerEntryRead(SQLModel):
    id: int
    kind: str
    amount: int
    role: str
    session_id: Optional[int] = None
    balance_before: Optional[int] = None
    balance_after: Optional[int] = None
    created_at: datetime

    @classmethod
    def from_row(cls, e: LedgerEntry) -> "LedgerEntryRead":
        return cls(
            id=e.id,
            kind=e.kind,
            amount=e.amount,
            role=e.role,
            session_id=e.session_id,
            balance_before=e.balance_before,
            balance_after=e.balance_after,
            created_at=as_aware(e.created_at),
        )
