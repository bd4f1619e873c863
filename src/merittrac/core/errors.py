class MeritTracError(Exception):
    pass


class ValidationError(MeritTracError):
    pass


class NotFoundError(MeritTracError):
    pass


class AccessDeniedError(MeritTracError):
    pass


class ExternalCallError(MeritTracError):
    """Failure reported by Firestore, Firebase Auth or the AI service."""
