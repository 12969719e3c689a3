"""Abstract API blueprint and core utilities.

Every remote API collaborator inherits from :class:`ComputeBlueprint`.
Import it to type-hint your own code or to plug in another provider.
"""

from .compute import ComputeBlueprint
from .config import LinodeConfig, ReconcileSettings, UnmatchedConfigPolicy


__all__ = [
    "ComputeBlueprint",
    "LinodeConfig",
    "ReconcileSettings",
    "UnmatchedConfigPolicy",
]
