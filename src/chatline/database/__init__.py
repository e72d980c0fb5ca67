from .base import Base
from .types import UTCDateTime, utcnow

__all__ = ["Base", "UTCDateTime", "utcnow"]
