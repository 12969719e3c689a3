"""
Desired/observed state normalizer.

Turns a raw desired-state record and a raw provider snapshot into the
same :class:`~nodeform.instance.models.InstanceState` shape. Everything
here is a pure transform: no remote calls, no mutation of the inputs.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ValidationError

from nodeform.base.exceptions import MalformedStateError
from nodeform.instance.models import (
    SWAP_FILESYSTEM,
    Alerts,
    BackupSchedule,
    Backups,
    Config,
    DeviceMap,
    Disk,
    Helpers,
    InstanceState,
    Specs,
)

# Provider private networking range.
PRIVATE_NETWORK = ipaddress.ip_network("192.168.0.0/16")

_SENSITIVE_FIELDS = {"root_pass"}


def parse_instance_id(value: Any) -> int:
    """Parse a persisted identity string into the numeric remote id.

    Raises:
        MalformedStateError: If the value is not a positive integer.
    """
    try:
        instance_id = int(str(value))
    except (TypeError, ValueError) as e:
        raise MalformedStateError(
            f"cannot parse instance id {value!r} as an integer",
            operation="parse_id",
        ) from e
    if instance_id <= 0:
        raise MalformedStateError(f"invalid instance id {value!r}", operation="parse_id")
    return instance_id


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse a provider timestamp (naive UTC ISO-8601) into an aware datetime."""
    if isinstance(value, datetime):
        stamp = value
    else:
        stamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


def is_private_address(address: str) -> bool:
    return ipaddress.ip_address(address.split("/")[0]) in PRIVATE_NETWORK


def classify_addresses(addresses: Iterable[str]) -> tuple[list[str], list[str]]:
    """Split IPv4 addresses into (public, private), preserving order."""
    public: list[str] = []
    private: list[str] = []
    for address in addresses:
        (private if is_private_address(address) else public).append(address)
    return public, private


def infer_swap_size(disks: Sequence[Disk] | None) -> int | None:
    """Total size of the swap disks; ``None`` when there is no disk list."""
    if disks is None:
        return None
    return sum(disk.size for disk in disks if disk.filesystem == SWAP_FILESYSTEM)


def normalize_desired(record: Mapping[str, Any] | InstanceState) -> InstanceState:
    """Validate a desired-state record and resolve computed defaults.

    Args:
        record: Desired-state mapping (or an already built state).

    Returns:
        The normalized state.

    Raises:
        MalformedStateError: If the record or any device entry is malformed.
    """
    if isinstance(record, InstanceState):
        state = record.model_copy(deep=True)
    else:
        try:
            state = InstanceState.model_validate(dict(record))
        except ValidationError as e:
            raise MalformedStateError(
                f"invalid desired state: {e}",
                entity_id=record.get("id"),
                operation="normalize",
            ) from e
    if state.swap_size is None and state.disks:
        state.swap_size = infer_swap_size(state.disks)
    return state


def _pick(model: type[BaseModel], raw: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Keep only the keys `model` knows about; the provider adds fields over time."""
    if raw is None:
        return None
    return {key: value for key, value in raw.items() if key in model.model_fields}


def _first_address(entries: Sequence[Mapping[str, Any]] | None) -> str | None:
    for entry in entries or ():
        if entry.get("address"):
            return str(entry["address"])
    return None


def _normalize_config(raw: Mapping[str, Any], disk_labels: Mapping[int, str]) -> Config:
    devices = None
    if raw.get("devices") is not None:
        devices = DeviceMap.model_validate(raw["devices"])
        labelled = {}
        for slot, ref in devices.items():
            if ref.disk_id is not None and ref.disk_id in disk_labels:
                ref = ref.model_copy(update={"disk_label": disk_labels[ref.disk_id]})
            labelled[slot] = ref
        devices = DeviceMap(labelled)
    return Config(
        id=raw.get("id"),
        label=raw["label"],
        kernel=raw.get("kernel"),
        run_level=raw.get("run_level"),
        virt_mode=raw.get("virt_mode"),
        root_device=raw.get("root_device"),
        comments=raw.get("comments"),
        memory_limit=raw.get("memory_limit"),
        helpers=_pick(Helpers, raw.get("helpers")),
        devices=devices,
    )


def normalize_observed(
    instance: Mapping[str, Any],
    disks: Sequence[Mapping[str, Any]],
    configs: Sequence[Mapping[str, Any]],
    addresses: Mapping[str, Any] | None = None,
) -> InstanceState:
    """Build the observed state from raw provider JSON.

    Args:
        instance: Raw instance.
        disks: Raw disk list, in creation order.
        configs: Raw config list, in creation order.
        addresses: Raw network payload; when omitted the instance's own
            ``ipv4`` list is classified instead.

    Returns:
        The normalized state.
    """
    try:
        return _observed_state(instance, disks, configs, addresses)
    except ValidationError as e:
        raise MalformedStateError(
            f"unexpected provider representation: {e}",
            entity_id=instance.get("id"),
            operation="normalize_observed",
        ) from e


def _observed_state(
    instance: Mapping[str, Any],
    disks: Sequence[Mapping[str, Any]],
    configs: Sequence[Mapping[str, Any]],
    addresses: Mapping[str, Any] | None,
) -> InstanceState:
    ipv4 = [str(a) for a in instance.get("ipv4") or []]
    if addresses is not None:
        v4 = addresses.get("ipv4") or {}
        public_ip = _first_address(v4.get("public"))
        private_ip = _first_address(v4.get("private"))
    else:
        public, private = classify_addresses(ipv4)
        public_ip = public[0] if public else None
        private_ip = private[0] if private else None

    observed_disks = [
        Disk(
            id=raw.get("id"),
            label=raw["label"],
            size=raw["size"],
            filesystem=raw.get("filesystem"),
            read_only=raw.get("read_only"),
            status=raw.get("status"),
        )
        for raw in disks
    ]
    disk_labels = {disk.id: disk.label for disk in observed_disks if disk.id is not None}
    observed_configs = [_normalize_config(raw, disk_labels) for raw in configs]

    backups = _pick(Backups, instance.get("backups"))
    if backups is not None:
        backups["schedule"] = _pick(BackupSchedule, backups.get("schedule"))
    return InstanceState(
        id=str(instance["id"]),
        region=instance.get("region"),
        type=instance.get("type"),
        label=instance.get("label"),
        group=instance.get("group"),
        status=instance.get("status"),
        image=instance.get("image"),
        backups_enabled=bool(backups.get("enabled")) if backups else None,
        watchdog_enabled=instance.get("watchdog_enabled"),
        private_ip=private_ip is not None,
        alerts=_pick(Alerts, instance.get("alerts")),
        specs=_pick(Specs, instance.get("specs")),
        backups=backups,
        ip_address=public_ip,
        private_ip_address=private_ip,
        ipv4=ipv4,
        ipv6=instance.get("ipv6"),
        disks=observed_disks,
        configs=observed_configs,
        swap_size=infer_swap_size(observed_disks),
        boot_config_label=observed_configs[0].label if len(observed_configs) == 1 else None,
    )


def to_desired(state: InstanceState) -> dict[str, Any]:
    """Serialize a state back into the desired-state representation.

    Sensitive creation-only secrets are never written back.
    """
    exclude: dict[str, Any] = {field: True for field in _SENSITIVE_FIELDS}
    if state.disks is not None:
        exclude["disks"] = {"__all__": set(_SENSITIVE_FIELDS)}
    return state.model_dump(mode="json", exclude_none=True, exclude=exclude)


def connection_info(state: InstanceState) -> dict[str, str]:
    """SSH connection details for the primary public address."""
    if not state.ip_address:
        return {}
    return {"type": "ssh", "host": state.ip_address}
