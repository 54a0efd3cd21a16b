# ============================================================
# errors.py — Erreurs métier du moteur de sessions
# ------------------------------------------------------------
# Chaque erreur porte le code HTTP que la couche API renvoie.
# La couche moteur ne connaît pas FastAPI : elle lève ces
# exceptions, api.py les traduit en HTTPException.
# ============================================================


class EngineError(Exception):
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(EngineError):
    status_code = 400


class ConflictError(EngineError):
    status_code = 409


class InsufficientCreditsError(EngineError):
    status_code = 403


class NotFoundError(EngineError):
    status_code = 404


class NotHostError(EngineError):
    status_code = 403


class NotParticipantError(EngineError):
    status_code = 403


# Transition interdite (ex: démarrer une session annulée)
class InvalidTransitionError(EngineError):
    status_code = 409


# Trop tôt pour rejoindre, ou session déjà terminée
class JoinRejectedError(EngineError):
    status_code = 409
