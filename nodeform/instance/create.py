"""Create orchestrator.

Brings a new instance from nothing to ``running``::

    requested → provisioning → disks_pending → configs_pending
              → boot_pending → running

Any failure moves the orchestrator to ``failed``. Nothing is rolled
back: the raised :class:`ProvisioningError` lists what already exists.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any

from nodeform.base.compute import ComputeBlueprint
from nodeform.base.config import ReconcileSettings
from nodeform.base.exceptions import (
    BootConfigNotFoundError,
    MalformedStateError,
    NodeformError,
    ProvisioningError,
    TooManyDevicesError,
    UnknownDiskLabelError,
)
from nodeform.base.logger import nf_logger
from nodeform.instance import poller
from nodeform.instance.diff import index_by_label, resolve_boot_label
from nodeform.instance.models import DEVICE_SLOTS, Config, DeviceMap, Disk, InstanceState, InstanceStatus
from nodeform.instance.normalize import parse_timestamp
from nodeform.instance.volumes import detach_config_volumes

_BASE_OPTIONS = ("region", "type", "label", "group", "backups_enabled", "private_ip")
_IMAGE_OPTIONS = (
    "image",
    "root_pass",
    "authorized_keys",
    "backup_id",
    "swap_size",
    "stackscript_id",
    "stackscript_data",
)
_DISK_OPTIONS = (
    "label",
    "size",
    "filesystem",
    "read_only",
    "image",
    "root_pass",
    "authorized_keys",
    "stackscript_id",
    "stackscript_data",
)
_CONFIG_OPTIONS = ("label", "kernel", "run_level", "virt_mode", "comments", "memory_limit")
_IMPLICIT_LABEL = re.compile(r"linode\d+-config")


class CreateState(str, Enum):
    REQUESTED = "requested"
    PROVISIONING = "provisioning"
    DISKS_PENDING = "disks_pending"
    CONFIGS_PENDING = "configs_pending"
    BOOT_PENDING = "boot_pending"
    RUNNING = "running"
    FAILED = "failed"


def implicit_config_label(instance_id: int) -> str:
    return f"linode{instance_id}-config"


def _pick(source: Any, names: tuple[str, ...]) -> dict[str, Any]:
    return {name: getattr(source, name) for name in names if getattr(source, name) is not None}


def disk_spec(disk: Disk) -> dict[str, Any]:
    """Creation payload for a disk."""
    return _pick(disk, _DISK_OPTIONS)


def config_spec(config: Config, devices: DeviceMap | None) -> dict[str, Any]:
    """Creation/update payload for a config with already resolved devices.

    The root device is cleared when no device resolves.
    """
    spec = _pick(config, _CONFIG_OPTIONS)
    if config.helpers is not None:
        spec["helpers"] = config.helpers.model_dump(exclude_none=True)
    if devices is not None:
        spec["devices"] = devices.to_api()
    if devices is not None and len(devices) == 0:
        spec["root_device"] = ""
    elif config.root_device is not None:
        spec["root_device"] = config.root_device
    return spec


class CreateOrchestrator:
    """Sequences instance, disk, config creation and boot.

    Attributes:
        state: Current :class:`CreateState`.
        instance_id: Remote id once the instance exists.
        disk_ids: Label → id of the disks created so far.
        config_ids: Label → id of the configs created so far, in creation order.
        failed_step: State that was active when the create failed.
    """

    def __init__(self, api: ComputeBlueprint, settings: ReconcileSettings | None = None) -> None:
        self.api = api
        self.settings = settings or ReconcileSettings()
        self.state = CreateState.REQUESTED
        self.instance_id: int | None = None
        self.disk_ids: dict[str, int] = {}
        self.config_ids: dict[str, int] = {}
        self.failed_step: CreateState | None = None
        self._created: datetime | None = None

    # --- validation ---

    def validate(self, desired: InstanceState) -> None:
        """Reject desired states that cannot be provisioned, before any remote call."""
        if not desired.region:
            raise MalformedStateError("region is required to create an instance", operation="create")
        disks = index_by_label(desired.disks or [], "disk")
        configs = index_by_label(desired.configs or [], "config")
        if disks and not configs and len(disks) > len(DEVICE_SLOTS):
            raise TooManyDevicesError(
                f"{len(disks)} disks cannot be mapped onto {len(DEVICE_SLOTS)} device slots",
                operation="create",
            )
        for config in configs.values():
            for label in config.devices.disk_labels() if config.devices else []:
                if label not in disks:
                    raise UnknownDiskLabelError(
                        f"config '{config.label}' references unknown disk label '{label}'",
                        operation="create",
                    )
        label = desired.boot_config_label
        if configs and label and label not in configs:
            raise BootConfigNotFoundError(
                f"boot_config_label: config label '{label}' not found",
                operation="create",
            )
        # Without declared configs the only bootable config is the implicit one.
        if disks and not configs and label and not _IMPLICIT_LABEL.fullmatch(label):
            raise BootConfigNotFoundError(
                f"boot_config_label: config label '{label}' not found; "
                "only the implicit 'linode<ID>-config' is created when no configs are declared",
                operation="create",
            )

    # --- entry point ---

    def run(self, desired: InstanceState) -> int:
        """Create the instance described by ``desired``.

        Returns:
            The new instance id.

        Raises:
            ValidationConflictError: If ``desired`` cannot be provisioned.
            InvariantViolationError: On duplicate labels or too many disks.
            ProvisioningError: If a remote step fails; chained to the cause.
        """
        self.validate(desired)
        try:
            if desired.disks or desired.configs:
                self._create_unbooted(desired)
                if desired.disks:
                    self._create_disks(desired.disks)
                self._create_configs(desired)
                self._boot(desired)
            else:
                self._create_booted(desired)
        except NodeformError as e:
            self.failed_step = self.state
            self.state = CreateState.FAILED
            nf_logger.error(
                f"Create failed during {self.failed_step.value}: {e}",
                entity_id=self.instance_id,
                operation="create",
            )
            raise ProvisioningError(
                f"create stopped during {self.failed_step.value}: {e}",
                step=self.failed_step.value,
                entity_id=self.instance_id,
                disk_ids=self.disk_ids,
                config_ids=self.config_ids,
            ) from e
        self.state = CreateState.RUNNING
        assert self.instance_id is not None
        return self.instance_id

    # --- steps ---

    def _create_booted(self, desired: InstanceState) -> None:
        self.state = CreateState.PROVISIONING
        options = _pick(desired, _BASE_OPTIONS)
        options.update(_pick(desired, _IMAGE_OPTIONS))
        options["booted"] = True
        instance = self.api.create_instance(**options)
        self.instance_id = instance["id"]
        nf_logger.info("Created and booted instance", entity_id=self.instance_id, operation="create_instance")

    def _create_unbooted(self, desired: InstanceState) -> None:
        self.state = CreateState.PROVISIONING
        options = _pick(desired, _BASE_OPTIONS)
        options["booted"] = False
        instance = self.api.create_instance(**options)
        self.instance_id = instance["id"]
        self._created = parse_timestamp(instance["created"])
        nf_logger.info("Created unbooted instance", entity_id=self.instance_id, operation="create_instance")
        poller.wait_for_event_finished(
            self.api,
            self.instance_id,
            "linode_create",
            self._created,
            self.settings.create_timeout,
            interval=self.settings.poll_interval,
        )

    def _create_disks(self, disks: list[Disk]) -> None:
        self.state = CreateState.DISKS_PENDING
        assert self.instance_id is not None
        for disk in disks:
            created = self.api.create_disk(self.instance_id, **disk_spec(disk))
            self.disk_ids[disk.label] = created["id"]
            nf_logger.info(
                f"Created disk '{disk.label}' ({created['id']})",
                entity_id=self.instance_id,
                operation="create_disk",
            )
            poller.wait_for_event_finished(
                self.api,
                self.instance_id,
                "disk_create",
                parse_timestamp(created.get("created") or self._created),
                self.settings.create_timeout,
                interval=self.settings.poll_interval,
            )

    def _create_configs(self, desired: InstanceState) -> None:
        self.state = CreateState.CONFIGS_PENDING
        assert self.instance_id is not None
        if desired.configs:
            configs = [
                (config, config.devices.resolve(self.disk_ids, entity_id=self.instance_id) if config.devices else None)
                for config in desired.configs
            ]
        else:
            implicit = Config(label=implicit_config_label(self.instance_id))
            devices = DeviceMap.from_disk_ids(self.disk_ids.values(), entity_id=self.instance_id)
            configs = [(implicit, devices)]

        for config, devices in configs:
            if devices is not None:
                detach_config_volumes(
                    self.api,
                    devices,
                    self.instance_id,
                    timeout=self.settings.create_timeout,
                    interval=self.settings.poll_interval,
                )
            created = self.api.create_config(self.instance_id, **config_spec(config, devices))
            self.config_ids[config.label] = created["id"]
            nf_logger.info(
                f"Created config '{config.label}' ({created['id']})",
                entity_id=self.instance_id,
                operation="create_config",
            )

    def _boot(self, desired: InstanceState) -> None:
        self.state = CreateState.BOOT_PENDING
        assert self.instance_id is not None
        label = resolve_boot_label(desired.boot_config_label, list(self.config_ids), self.instance_id)
        config_id = self.config_ids[label]
        self.api.boot_instance(self.instance_id, config_id)
        nf_logger.info(f"Booting config '{label}'", entity_id=self.instance_id, operation="boot_instance")
        poller.wait_for_event_finished(
            self.api,
            self.instance_id,
            "linode_boot",
            self._created,
            self.settings.create_timeout,
            interval=self.settings.poll_interval,
        )
        poller.wait_for_status(
            self.api,
            self.instance_id,
            InstanceStatus.RUNNING.value,
            self.settings.create_timeout,
            interval=self.settings.poll_interval,
        )
