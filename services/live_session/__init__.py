from .clock import FixedClock, SystemClock
from .errors import (
    ConflictError, EngineError, InsufficientCreditsError, InvalidTransitionError,
    JoinRejectedError, NotFoundError, NotHostError, NotParticipantError, ValidationError,
)
from .service import JoinInfo, LiveSessionService
from .settlement import SettlementResult
