"""Instance reconciliation engine.

Normalizer, diff engine, create/update/delete orchestrators and the
remote state poller for a single compute instance.
"""

from .create import CreateOrchestrator, CreateState
from .delete import DeleteOrchestrator
from .diff import Change, ChangeKind, InstancePlan, diff_instance
from .models import Config, DeviceMap, DeviceRef, Disk, InstanceState, InstanceStatus
from .normalize import normalize_desired, normalize_observed, to_desired
from .resource import InstanceResource
from .update import UpdateOrchestrator

__all__ = [
    "Change",
    "ChangeKind",
    "Config",
    "CreateOrchestrator",
    "CreateState",
    "DeleteOrchestrator",
    "DeviceMap",
    "DeviceRef",
    "Disk",
    "InstancePlan",
    "InstanceResource",
    "InstanceState",
    "InstanceStatus",
    "UpdateOrchestrator",
    "diff_instance",
    "normalize_desired",
    "normalize_observed",
    "to_desired",
]
