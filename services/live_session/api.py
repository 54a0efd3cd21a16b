# ============================================================
# Live Session API Router
# ------------------------------------------------------------
# Expose les opérations du moteur en REST : création de session,
# réponse aux invitations, démarrage / annulation / fin, entrée
# dans la salle, lectures (avec synchro paresseuse) et
# portefeuille. Aucune règle métier ici : on appelle la façade
# et on traduit ses erreurs en HTTPException.
# L’identité de l’appelant arrive dans l’en-tête X-User-Id
# (l’authentification est faite en amont).
# ============================================================
from datetime import timezone
from typing import List
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlmodel import Session

from . import config
from .clock import SystemClock
from .database import get_session
from .errors import EngineError
from .models import InviteResponse, LedgerEntryRead, SessionCreate, SessionRead, WalletSummary
from .publisher import RabbitNotifier
from .service import UPCOMING, LiveSessionService

LOCAL_TZ = ZoneInfo(config.LOCAL_TZ_NAME)

router = APIRouter()


def get_clock():
    return SystemClock()


def get_notifier():
    return RabbitNotifier()


def get_service(s: Session = Depends(get_session), clock=Depends(get_clock),
                notifier=Depends(get_notifier)) -> LiveSessionService:
    return LiveSessionService(s, clock=clock, notifier=notifier)


def current_user(x_user_id: str = Header(...)) -> str:
    return x_user_id


def http_error(e: EngineError) -> HTTPException:
    return HTTPException(e.status_code, e.message)


# ------------------------------------------------------------
# POST /v1/sessions — Créer une session
# ------------------------------------------------------------
# - si pas de tz, on suppose la timezone locale
# - normalisation en UTC, puis création via le moteur
#   (validation, conflit hôte, portefeuille hôte)
# ------------------------------------------------------------
@router.post("/v1/sessions", response_model=SessionRead, status_code=201)
def create_session(body: SessionCreate, user: str = Depends(current_user),
                   service: LiveSessionService = Depends(get_service)):
    start = body.start
    if start.tzinfo is None:
        start = start.replace(tzinfo=LOCAL_TZ)
    start = start.astimezone(timezone.utc)
    try:
        return service.create_session(user, start, body.duration_minutes, body.invitees,
                                      title=body.title, purpose=body.purpose)
    except EngineError as e:
        raise http_error(e)


@router.get("/v1/sessions", response_model=List[SessionRead])
def list_sessions(status_filter: str = Query(UPCOMING, alias="filter"), user: str = Depends(current_user),
                  service: LiveSessionService = Depends(get_service)):
    try:
        return service.list_sessions(user, status_filter)
    except EngineError as e:
        raise http_error(e)


@router.get("/v1/sessions/pending-invites", response_model=List[SessionRead])
def pending_invites(user: str = Depends(current_user), service: LiveSessionService = Depends(get_service)):
    return service.list_pending_invites(user)


@router.get("/v1/sessions/{session_id}", response_model=SessionRead)
def get_session_detail(session_id: int, user: str = Depends(current_user),
                       service: LiveSessionService = Depends(get_service)):
    try:
        return service.get_session(user, session_id)
    except EngineError as e:
        raise http_error(e)


# ------------------------------------------------------------
# POST /v1/sessions/{id}/respond — Accepter / refuser
# ------------------------------------------------------------
@router.post("/v1/sessions/{session_id}/respond", response_model=SessionRead)
def respond_to_invite(session_id: int, body: InviteResponse, user: str = Depends(current_user),
                      service: LiveSessionService = Depends(get_service)):
    try:
        return service.respond_to_invite(user, session_id, body.action)
    except EngineError as e:
        raise http_error(e)


@router.post("/v1/sessions/{session_id}/leave", response_model=SessionRead)
def leave_session(session_id: int, user: str = Depends(current_user),
                  service: LiveSessionService = Depends(get_service)):
    try:
        return service.leave_session(user, session_id)
    except EngineError as e:
        raise http_error(e)


@router.post("/v1/sessions/{session_id}/start", response_model=SessionRead)
def start_session(session_id: int, user: str = Depends(current_user),
                  service: LiveSessionService = Depends(get_service)):
    try:
        return service.start_session(user, session_id)
    except EngineError as e:
        raise http_error(e)


@router.post("/v1/sessions/{session_id}/cancel", response_model=SessionRead)
def cancel_session(session_id: int, user: str = Depends(current_user),
                   service: LiveSessionService = Depends(get_service)):
    try:
        return service.cancel_session(user, session_id)
    except EngineError as e:
        raise http_error(e)


# ------------------------------------------------------------
# POST /v1/sessions/{id}/end — Fin de session + règlement
# ------------------------------------------------------------
# Idempotent : terminer une session déjà terminée renvoie 200
# avec alreadyEnded=true et aucun mouvement de crédits.
# ------------------------------------------------------------
@router.post("/v1/sessions/{session_id}/end")
def end_session(session_id: int, user: str = Depends(current_user),
                service: LiveSessionService = Depends(get_service)):
    try:
        result = service.end_session(user, session_id)
    except EngineError as e:
        raise http_error(e)
    if not result.success:
        raise HTTPException(500, result.error or "settlement failed")
    return {
        "success": True,
        "alreadyEnded": result.already_terminal,
        "durationMinutes": result.duration_minutes,
        "charged": result.charged,
        "failed": result.failed,
        "hostEarned": result.host_earned,
        "session": SessionRead.from_row(result.session),
    }


@router.post("/v1/sessions/{session_id}/join")
def join_session(session_id: int, user: str = Depends(current_user),
                 service: LiveSessionService = Depends(get_service)):
    try:
        info = service.join_session(user, session_id)
    except EngineError as e:
        raise http_error(e)
    return {"session": info.session, "isHost": info.is_host}


# ------------------------------------------------------------
# Portefeuille
# ------------------------------------------------------------
@router.get("/v1/wallet", response_model=WalletSummary)
def wallet_summary(user: str = Depends(current_user), service: LiveSessionService = Depends(get_service)):
    return service.get_wallet_summary(user)


@router.get("/v1/wallet/history", response_model=List[LedgerEntryRead])
def wallet_history(user: str = Depends(current_user), service: LiveSessionService = Depends(get_service)):
    return service.get_wallet_history(user)
