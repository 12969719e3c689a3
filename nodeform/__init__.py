"""Nodeform: declarative reconciliation of Linode compute instances.

Entry point for the library. Build an :class:`InstanceResource` around a
remote API client and apply a desired-state record::

    from nodeform import InstanceResource
    from nodeform.linode import Compute

    resource = InstanceResource(Compute({"token": "..."}))
    resource.apply({"region": "us-east", "type": "g6-standard-1", "image": "linode/debian12"})
"""

from .base import ComputeBlueprint, LinodeConfig, ReconcileSettings, UnmatchedConfigPolicy
from .instance import InstancePlan, InstanceResource, InstanceState

__all__ = [
    "ComputeBlueprint",
    "InstancePlan",
    "InstanceResource",
    "InstanceState",
    "LinodeConfig",
    "ReconcileSettings",
    "UnmatchedConfigPolicy",
]
