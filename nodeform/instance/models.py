"""
Normalized instance model.

Desired state (what the user declares) and observed state (what the
provider reports) are both expressed as an :class:`InstanceState` so the
diff engine can compare them field by field. ``None`` always means
"unset": the field is either computed by the provider or not managed.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, RootModel, field_validator, model_validator

from nodeform.base.exceptions import TooManyDevicesError, UnknownDiskLabelError

DEVICE_SLOTS: tuple[str, ...] = ("sda", "sdb", "sdc", "sdd", "sde", "sdf", "sdg", "sdh")
SWAP_FILESYSTEM = "swap"


class InstanceStatus(str, Enum):
    """Instance status values reported by the provider."""

    PROVISIONING = "provisioning"
    BOOTING = "booting"
    RUNNING = "running"
    OFFLINE = "offline"
    SHUTTING_DOWN = "shutting_down"
    REBOOTING = "rebooting"
    MIGRATING = "migrating"
    RESIZING = "resizing"
    REBUILDING = "rebuilding"
    CLONING = "cloning"
    RESTORING = "restoring"
    DELETING = "deleting"
    STOPPED = "stopped"


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid")


class Alerts(_Model):
    """Alert thresholds; unset thresholds are left as the provider has them."""

    cpu: int | None = None
    network_in: int | None = None
    network_out: int | None = None
    transfer_quota: int | None = None
    io: int | None = None


class Specs(_Model):
    disk: int | None = None
    memory: int | None = None
    vcpus: int | None = None
    transfer: int | None = None


class BackupSchedule(_Model):
    day: str | None = None
    window: str | None = None


class Backups(_Model):
    enabled: bool = False
    schedule: BackupSchedule | None = None


class Helpers(_Model):
    """Config helper toggles."""

    updatedb_disabled: bool | None = None
    distro: bool | None = None
    modules_dep: bool | None = None
    network: bool | None = None
    devtmpfs_automount: bool | None = None


class DeviceRef(_Model):
    """What a single device slot points at: a disk (by label or id) or a volume."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    disk_label: str | None = None
    disk_id: int | None = None
    volume_id: int | None = None

    @model_validator(mode="after")
    def check_target(self) -> DeviceRef:
        has_disk = self.disk_label is not None or self.disk_id is not None
        if has_disk and self.volume_id is not None:
            raise ValueError("a device slot cannot reference both a disk and a volume")
        if not has_disk and self.volume_id is None:
            raise ValueError("a device slot needs a disk_label, disk_id or volume_id")
        return self

    @property
    def is_volume(self) -> bool:
        return self.volume_id is not None


class DeviceMap(RootModel[dict[str, DeviceRef]]):
    """Ordered mapping of device slot (``sda`` .. ``sdh``) to :class:`DeviceRef`.

    Empty slots are simply absent. Iteration always follows slot order.
    """

    root: dict[str, DeviceRef] = {}

    @model_validator(mode="before")
    @classmethod
    def drop_empty_slots(cls, value: Any) -> Any:
        # The provider reports unused slots as null, or as {disk_id: null, volume_id: null}.
        if not isinstance(value, Mapping):
            return value
        cleaned = {}
        for slot, ref in value.items():
            if ref is None:
                continue
            if isinstance(ref, Mapping) and all(v is None for v in ref.values()):
                continue
            cleaned[slot] = ref
        return cleaned

    @model_validator(mode="after")
    def check_slots(self) -> DeviceMap:
        unknown = [slot for slot in self.root if slot not in DEVICE_SLOTS]
        if unknown:
            raise ValueError(f"unknown device slots {unknown}; expected one of {list(DEVICE_SLOTS)}")
        self.root = {slot: self.root[slot] for slot in DEVICE_SLOTS if slot in self.root}
        return self

    @classmethod
    def from_disk_ids(cls, disk_ids: Iterable[int], *, entity_id: Any = None) -> DeviceMap:
        """Assign disks to consecutive slots starting at ``sda``."""
        ids = list(disk_ids)
        if len(ids) > len(DEVICE_SLOTS):
            raise TooManyDevicesError(
                f"{len(ids)} disks cannot be mapped onto {len(DEVICE_SLOTS)} device slots",
                entity_id=entity_id,
                operation="map_devices",
            )
        return cls({slot: DeviceRef(disk_id=disk_id) for slot, disk_id in zip(DEVICE_SLOTS, ids)})

    def __iter__(self) -> Iterator[str]:  # type: ignore[override]
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def items(self) -> Iterable[tuple[str, DeviceRef]]:
        return self.root.items()

    def volume_ids(self) -> list[int]:
        return [ref.volume_id for ref in self.root.values() if ref.volume_id is not None]

    def disk_labels(self) -> list[str]:
        return [ref.disk_label for ref in self.root.values() if ref.disk_label is not None]

    def resolve(self, disk_ids: Mapping[str, int], *, entity_id: Any = None) -> DeviceMap:
        """Return a copy with every ``disk_label`` resolved to its current disk id.

        Raises:
            UnknownDiskLabelError: If a label is not in ``disk_ids``.
        """
        resolved = {}
        for slot, ref in self.root.items():
            if ref.disk_label is not None:
                if ref.disk_label not in disk_ids:
                    raise UnknownDiskLabelError(
                        f"device {slot} references unknown disk label '{ref.disk_label}'",
                        entity_id=entity_id,
                        operation="map_devices",
                    )
                ref = DeviceRef(disk_label=ref.disk_label, disk_id=disk_ids[ref.disk_label])
            resolved[slot] = ref
        return DeviceMap(resolved)

    def signature(self) -> tuple[tuple[str, int | None, int | None], ...]:
        """Comparable form: (slot, disk_id, volume_id) for every bound slot."""
        return tuple((slot, ref.disk_id, ref.volume_id) for slot, ref in self.root.items())

    def to_api(self) -> dict[str, dict[str, int | None] | None]:
        """Full slot map as the provider expects it; unbound slots are null."""
        payload: dict[str, dict[str, int | None] | None] = {}
        for slot in DEVICE_SLOTS:
            ref = self.root.get(slot)
            payload[slot] = None if ref is None else {"disk_id": ref.disk_id, "volume_id": ref.volume_id}
        return payload


class Disk(_Model):
    id: int | None = None
    label: str
    size: int
    filesystem: str | None = None
    read_only: bool | None = None
    status: str | None = None
    # Creation-only inputs
    image: str | None = None
    authorized_keys: list[str] | None = None
    root_pass: str | None = None
    stackscript_id: int | None = None
    stackscript_data: dict[str, str] | None = None

    @field_validator("authorized_keys")
    @classmethod
    def strip_keys(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else [key.strip() for key in value]


class Config(_Model):
    id: int | None = None
    label: str
    kernel: str | None = None
    run_level: str | None = None
    virt_mode: str | None = None
    root_device: str | None = None
    comments: str | None = None
    memory_limit: int | None = None
    helpers: Helpers | None = None
    devices: DeviceMap | None = None


class InstanceState(_Model):
    """Desired or observed state of one instance and its children."""

    id: str | None = None
    region: str | None = None
    type: str | None = None
    label: str | None = None
    group: str | None = None
    status: str | None = None

    # Creation-only inputs
    image: str | None = None
    backup_id: int | None = None
    stackscript_id: int | None = None
    stackscript_data: dict[str, str] | None = None
    authorized_keys: list[str] | None = None
    root_pass: str | None = None
    swap_size: int | None = None

    backups_enabled: bool | None = None
    watchdog_enabled: bool | None = None
    private_ip: bool | None = None
    alerts: Alerts | None = None

    # Computed by the provider
    specs: Specs | None = None
    backups: Backups | None = None
    ip_address: str | None = None
    private_ip_address: str | None = None
    ipv4: list[str] | None = None
    ipv6: str | None = None

    disks: list[Disk] | None = None
    configs: list[Config] | None = None
    boot_config_label: str | None = None

    @field_validator("authorized_keys")
    @classmethod
    def strip_keys(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else [key.strip() for key in value]

    @property
    def numeric_id(self) -> int | None:
        return None if self.id is None else int(self.id)


__all__ = [
    "DEVICE_SLOTS",
    "SWAP_FILESYSTEM",
    "Alerts",
    "BackupSchedule",
    "Backups",
    "Config",
    "DeviceMap",
    "DeviceRef",
    "Disk",
    "Helpers",
    "InstanceState",
    "InstanceStatus",
    "Specs",
]
