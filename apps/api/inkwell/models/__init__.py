from inkwell.models.account import AIRequestLog, UserProfile
from inkwell.models.story import (
    Character,
    Document,
    DocumentSnapshot,
    Location,
    Project,
    StoryEvent,
    WorldElement,
)

__all__ = [
    "Project",
    "Character",
    "Location",
    "WorldElement",
    "StoryEvent",
    "Document",
    "DocumentSnapshot",
    "UserProfile",
    "AIRequestLog",
]
