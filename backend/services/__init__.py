from .auth_service import AuthService, Hashers, NewUser, SessionBundle
from .clock import Clock, SystemClock
from .errors import AuthFailure, ErrorCategory, ErrorKind, Outcome
from .sweeper import RevocationSweeper

__all__ = [
    "AuthFailure",
    "AuthService",
    "Clock",
    "ErrorCategory",
    "ErrorKind",
    "Hashers",
    "NewUser",
    "Outcome",
    "RevocationSweeper",
    "SessionBundle",
    "SystemClock",
]
