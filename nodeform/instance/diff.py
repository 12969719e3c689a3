"""Diff engine for instance reconciliation.

Compares a normalized desired :class:`InstanceState` against the
observed one and produces an :class:`InstancePlan`: the list of changes
each orchestrator step has to apply. Conflicts that can never be
reconciled (filesystem changes, duplicate labels, no bootable config)
are raised here, before any remote call is made.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from nodeform.base.config import UnmatchedConfigPolicy
from nodeform.base.exceptions import (
    BootConfigNotFoundError,
    DuplicateLabelError,
    FilesystemChangeError,
    NoConfigError,
    UnknownDiskLabelError,
    UnmatchedConfigError,
    UnsupportedChangeError,
)
from nodeform.base.logger import nf_logger
from nodeform.instance.models import Alerts, Config, DeviceMap, Disk, InstanceState

_Labelled = TypeVar("_Labelled", Disk, Config)

_ATTRIBUTE_FIELDS = ("label", "group", "watchdog_enabled")
_CONFIG_FIELDS = ("kernel", "run_level", "virt_mode", "root_device", "comments", "memory_limit")


class ChangeKind(str, Enum):
    NOOP = "noop"
    UPDATE = "update"
    CREATE = "create"
    RESIZE = "resize"
    MIGRATE = "migrate"
    RECREATE = "recreate"


@dataclass(frozen=True)
class Change:
    """A single change to apply."""

    kind: ChangeKind
    category: str  # "instance", "backups", "type", "private_ip", "disk", "config", "region"
    target: str | None = None  # disk or config label
    fields: dict[str, Any] = field(default_factory=dict)
    reboot: bool = False


@dataclass
class InstancePlan:
    """Everything an update has to do, grouped by orchestrator phase."""

    instance_id: int | None
    recreate: Change | None = None
    attributes: Change | None = None
    backups: Change | None = None
    type_change: Change | None = None
    private_ip: Change | None = None
    disks: list[Change] = field(default_factory=list)
    configs: list[Change] = field(default_factory=list)
    unmatched_configs: list[str] = field(default_factory=list)
    boot_config_label: str | None = None

    def changes(self) -> list[Change]:
        """All changes in execution order, no-ops included."""
        singles = [self.recreate, self.attributes, self.backups, self.type_change, self.private_ip]
        return [c for c in singles if c is not None] + self.disks + self.configs

    @property
    def reboot_required(self) -> bool:
        return any(change.reboot for change in self.changes())

    @property
    def is_noop(self) -> bool:
        return all(change.kind is ChangeKind.NOOP for change in self.changes())


def index_by_label(
    items: Iterable[_Labelled],
    kind: str,
    entity_id: Any = None,
) -> dict[str, _Labelled]:
    """Map label → item, failing on the first duplicate label.

    Raises:
        DuplicateLabelError: If two items share a label.
    """
    index: dict[str, _Labelled] = {}
    for item in items:
        if item.label in index:
            raise DuplicateLabelError(
                f"label '{item.label}' is assigned to multiple {kind}s",
                entity_id=entity_id,
                operation=f"index_{kind}s",
            )
        index[item.label] = item
    return index


def diff_attributes(desired: InstanceState, observed: InstanceState) -> Change | None:
    """Batch every live-updatable attribute change into one UPDATE."""
    fields: dict[str, Any] = {}
    for name in _ATTRIBUTE_FIELDS:
        wanted = getattr(desired, name)
        if wanted is not None and wanted != getattr(observed, name):
            fields[name] = wanted

    if desired.alerts is not None:
        current = observed.alerts or Alerts()
        alerts = {
            name: value
            for name, value in desired.alerts.model_dump(exclude_none=True).items()
            if getattr(current, name) != value
        }
        if alerts:
            fields["alerts"] = alerts

    if not fields:
        return None
    return Change(ChangeKind.UPDATE, "instance", fields=fields)


def diff_backups(desired: InstanceState, observed: InstanceState) -> Change | None:
    if desired.backups_enabled is None or desired.backups_enabled == bool(observed.backups_enabled):
        return None
    return Change(ChangeKind.UPDATE, "backups", fields={"backups_enabled": desired.backups_enabled})


def diff_type(desired: InstanceState, observed: InstanceState) -> Change | None:
    if desired.type is None or desired.type == observed.type:
        return None
    return Change(ChangeKind.MIGRATE, "type", fields={"type": desired.type}, reboot=True)


def diff_private_ip(desired: InstanceState, observed: InstanceState) -> Change | None:
    """Private networking can only ever be switched on.

    Raises:
        UnsupportedChangeError: If the desired state turns it off.
    """
    if desired.private_ip is None or desired.private_ip == bool(observed.private_ip):
        return None
    if not desired.private_ip:
        raise UnsupportedChangeError(
            "removing a private IP address must be handled through a support ticket",
            entity_id=observed.id,
            operation="private_ip",
        )
    return Change(ChangeKind.UPDATE, "private_ip", fields={"private_ip": True}, reboot=True)


def diff_disks(
    desired: Sequence[Disk] | None,
    observed: Sequence[Disk],
    entity_id: Any = None,
) -> list[Change]:
    """Match disks by label.

    Unchanged disks yield NOOP, size changes RESIZE, unknown labels
    CREATE. Observed disks absent from the desired list are left alone.

    Raises:
        DuplicateLabelError: If labels repeat on either side.
        FilesystemChangeError: If a matched disk asks for another filesystem.
    """
    if desired is None:
        return []
    wanted = index_by_label(desired, "disk", entity_id)
    existing = index_by_label(observed, "disk", entity_id)

    changes = []
    for label, disk in wanted.items():
        current = existing.get(label)
        if current is None:
            spec = disk.model_dump(exclude_none=True, exclude={"id", "status"})
            changes.append(Change(ChangeKind.CREATE, "disk", label, spec, reboot=True))
            continue
        if (
            disk.filesystem is not None
            and current.filesystem is not None
            and disk.filesystem != current.filesystem
        ):
            raise FilesystemChangeError(
                f"disk {current.id} ('{label}'): filesystem changes are not supported "
                f"('{disk.filesystem}' != '{current.filesystem}')",
                entity_id=entity_id,
                operation="update_disk",
            )
        if disk.size != current.size:
            fields = {"disk_id": current.id, "size": disk.size}
            changes.append(Change(ChangeKind.RESIZE, "disk", label, fields, reboot=True))
        else:
            changes.append(Change(ChangeKind.NOOP, "disk", label, {"disk_id": current.id}))

    for label in existing.keys() - wanted.keys():
        nf_logger.debug(f"Disk '{label}' is not declared; leaving it untouched", entity_id=entity_id)
    return changes


def _devices_changed(
    wanted: DeviceMap,
    current: DeviceMap | None,
    disk_ids: Mapping[str, int],
    pending_labels: set[str],
    entity_id: Any,
) -> bool:
    for label in wanted.disk_labels():
        if label not in disk_ids and label not in pending_labels:
            raise UnknownDiskLabelError(
                f"device references unknown disk label '{label}'",
                entity_id=entity_id,
                operation="map_devices",
            )
    if any(label in pending_labels for label in wanted.disk_labels()):
        return True
    known = {label: disk_ids[label] for label in wanted.disk_labels()}
    resolved = wanted.resolve(known, entity_id=entity_id)
    return resolved.signature() != (current.signature() if current is not None else ())


def diff_configs(
    desired: Sequence[Config] | None,
    observed: Sequence[Config],
    disk_ids: Mapping[str, int],
    pending_labels: set[str] | None = None,
    *,
    policy: UnmatchedConfigPolicy = UnmatchedConfigPolicy.IGNORE,
    entity_id: Any = None,
) -> tuple[list[Change], list[str]]:
    """Match configs by label.

    Args:
        desired: Declared configs, or None when configs are unmanaged.
        observed: Remote configs.
        disk_ids: Label → id of the disks that exist remotely.
        pending_labels: Labels of disks the plan is about to create.
        policy: What to do with desired configs that have no remote match.
        entity_id: Instance id used in error context.

    Returns:
        ``(changes, unmatched_labels)``; unmatched labels are only
        reported under the ``ignore`` policy.
    """
    if desired is None:
        return [], []
    pending_labels = pending_labels or set()
    wanted = index_by_label(desired, "config", entity_id)
    existing = index_by_label(observed, "config", entity_id)

    changes: list[Change] = []
    unmatched: list[str] = []
    for label, config in wanted.items():
        current = existing.get(label)
        if current is None:
            if config.devices is not None:
                _devices_changed(config.devices, None, disk_ids, pending_labels, entity_id)
            if policy is UnmatchedConfigPolicy.ERROR:
                raise UnmatchedConfigError(
                    f"config '{label}' does not exist and configs are not created on update",
                    entity_id=entity_id,
                    operation="update_config",
                )
            if policy is UnmatchedConfigPolicy.CREATE:
                spec = config.model_dump(exclude_none=True, exclude={"id", "devices"})
                if config.devices is not None:
                    spec["devices"] = config.devices
                changes.append(Change(ChangeKind.CREATE, "config", label, spec))
            else:
                unmatched.append(label)
                nf_logger.warning(
                    f"Config '{label}' has no remote counterpart and will not be created",
                    entity_id=entity_id,
                    operation="update_config",
                )
            continue

        fields: dict[str, Any] = {"config_id": current.id}
        for name in _CONFIG_FIELDS:
            value = getattr(config, name)
            if value is not None and value != getattr(current, name):
                fields[name] = value
        if config.helpers is not None:
            helpers = config.helpers.model_dump(exclude_none=True)
            current_helpers = current.helpers.model_dump(exclude_none=True) if current.helpers else {}
            if any(current_helpers.get(k) != v for k, v in helpers.items()):
                fields["helpers"] = helpers
        reboot = False
        if config.devices is not None and _devices_changed(
            config.devices, current.devices, disk_ids, pending_labels, entity_id
        ):
            fields["devices"] = config.devices
            reboot = True

        if len(fields) > 1:
            changes.append(Change(ChangeKind.UPDATE, "config", label, fields, reboot=reboot))
        else:
            changes.append(Change(ChangeKind.NOOP, "config", label, fields))

    for label in existing.keys() - wanted.keys():
        nf_logger.debug(f"Config '{label}' is not declared; leaving it untouched", entity_id=entity_id)
    return changes, unmatched


def resolve_boot_label(
    boot_config_label: str | None,
    config_labels: Sequence[str],
    entity_id: Any = None,
) -> str:
    """Pick the config to boot: the explicit label, else the first by creation order.

    Raises:
        NoConfigError: If there is no config at all.
        BootConfigNotFoundError: If the explicit label does not exist.
    """
    if not config_labels:
        raise NoConfigError(
            "instance must have at least one config to boot",
            entity_id=entity_id,
            operation="resolve_boot_config",
        )
    if boot_config_label is None:
        return config_labels[0]
    if boot_config_label not in config_labels:
        raise BootConfigNotFoundError(
            f"boot_config_label: config label '{boot_config_label}' not found",
            entity_id=entity_id,
            operation="resolve_boot_config",
        )
    return boot_config_label


def diff_instance(
    desired: InstanceState,
    observed: InstanceState,
    *,
    policy: UnmatchedConfigPolicy = UnmatchedConfigPolicy.IGNORE,
) -> InstancePlan:
    """Compute the plan that converges ``observed`` towards ``desired``.

    Args:
        desired: Normalized desired state.
        observed: Normalized observed state.
        policy: Handling of desired configs with no remote counterpart.

    Returns:
        The plan. A region change yields a plan whose ``recreate`` is set;
        nothing else is computed for it.
    """
    entity_id = observed.numeric_id
    plan = InstancePlan(instance_id=entity_id)

    if desired.region is not None and observed.region is not None and desired.region != observed.region:
        plan.recreate = Change(
            ChangeKind.RECREATE, "region", fields={"region": desired.region}
        )
        return plan

    plan.attributes = diff_attributes(desired, observed)
    plan.backups = diff_backups(desired, observed)
    plan.type_change = diff_type(desired, observed)
    plan.private_ip = diff_private_ip(desired, observed)

    observed_disks = observed.disks or []
    observed_configs = observed.configs or []
    plan.disks = diff_disks(desired.disks, observed_disks, entity_id)

    disk_ids = {
        label: disk.id
        for label, disk in index_by_label(observed_disks, "disk", entity_id).items()
        if disk.id is not None
    }
    pending = {c.target for c in plan.disks if c.kind is ChangeKind.CREATE and c.target}
    plan.configs, plan.unmatched_configs = diff_configs(
        desired.configs,
        observed_configs,
        disk_ids,
        pending,
        policy=policy,
        entity_id=entity_id,
    )

    ordered = sorted(observed_configs, key=lambda c: (c.id is None, c.id or 0))
    labels = [c.label for c in ordered]
    labels += [c.target for c in plan.configs if c.kind is ChangeKind.CREATE and c.target]
    plan.boot_config_label = resolve_boot_label(desired.boot_config_label, labels, entity_id)
    return plan
