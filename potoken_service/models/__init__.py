from .base import Base
from .attempt_log import AttemptLog

__all__ = [
    "Base",
    "AttemptLog"
]
