"""Grouped proxy views over the root ``Settings`` object."""

from .core import CoreSettings
from .policy import PolicySettings
from .runtime import RuntimeSettings

__all__ = [
    "CoreSettings",
    "PolicySettings",
    "RuntimeSettings",
]
