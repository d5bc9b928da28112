from .events import Event
from .integrations import Integration
from .users import User

__all__ = [
    "Event",
    "Integration",
    "User",
]
