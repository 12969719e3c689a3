"""Update orchestrator.

Phase one applies the non-disruptive attribute changes in a single
batched call. Phase two applies the disruptive ones (type migration,
private IP activation, disk resize/creation, config device changes);
each only marks a reboot as pending so the whole update ends with at
most one reboot into the resolved boot config.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from nodeform.base.compute import ComputeBlueprint
from nodeform.base.config import ReconcileSettings
from nodeform.base.exceptions import UnsupportedChangeError
from nodeform.base.logger import nf_logger
from nodeform.instance import poller
from nodeform.instance.create import config_spec
from nodeform.instance.diff import Change, ChangeKind, InstancePlan, diff_instance
from nodeform.instance.models import Config, DeviceMap, InstanceState
from nodeform.instance.volumes import detach_config_volumes


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UpdateOrchestrator:
    """Applies an :class:`InstancePlan` to an existing instance.

    Attributes:
        pending_reboot: Set by every disruptive change.
        disk_ids: Label → id map rebuilt during the disk pass.
        config_ids: Label → id of every config after the config pass.
        private_ip_address: Address allocated by a private IP activation.
    """

    def __init__(self, api: ComputeBlueprint, settings: ReconcileSettings | None = None) -> None:
        self.api = api
        self.settings = settings or ReconcileSettings()
        self.pending_reboot = False
        self.disk_ids: dict[str, int] = {}
        self.config_ids: dict[str, int] = {}
        self.private_ip_address: str | None = None

    def run(self, desired: InstanceState, observed: InstanceState) -> InstancePlan:
        """Converge ``observed`` towards ``desired``.

        Returns:
            The plan that was applied.

        Raises:
            UnsupportedChangeError: If the plan requires recreating the instance.
        """
        plan = diff_instance(desired, observed, policy=self.settings.unmatched_config_policy)
        instance_id = plan.instance_id
        assert instance_id is not None
        if plan.recreate is not None:
            raise UnsupportedChangeError(
                "region cannot be changed in place; the instance must be recreated",
                entity_id=instance_id,
                operation="update",
            )
        if plan.is_noop:
            nf_logger.debug("Instance is up to date", entity_id=instance_id, operation="update")

        self._update_attributes(instance_id, plan.attributes)
        self._update_backups(instance_id, plan.backups)
        self._migrate_type(instance_id, plan.type_change)
        self._activate_private_ip(instance_id, plan.private_ip)
        self._reconcile_disks(instance_id, plan.disks, observed)
        self._reconcile_configs(instance_id, plan.configs, desired, observed)

        if self.pending_reboot:
            self._reboot(instance_id, plan.boot_config_label)
        return plan

    # --- phase one ---

    def _update_attributes(self, instance_id: int, change: Change | None) -> None:
        if change is None:
            return
        self.api.update_instance(instance_id, **change.fields)
        nf_logger.info(
            f"Updated attributes {sorted(change.fields)}",
            entity_id=instance_id,
            operation="update_instance",
        )

    def _update_backups(self, instance_id: int, change: Change | None) -> None:
        if change is None:
            return
        if change.fields["backups_enabled"]:
            self.api.enable_backups(instance_id)
            nf_logger.info("Enabled backups", entity_id=instance_id, operation="enable_backups")
        else:
            self.api.cancel_backups(instance_id)
            nf_logger.info("Cancelled backups", entity_id=instance_id, operation="cancel_backups")

    # --- phase two ---

    def _migrate_type(self, instance_id: int, change: Change | None) -> None:
        if change is None:
            return
        since = _now()
        self.api.resize_instance(instance_id, change.fields["type"])
        nf_logger.info(
            f"Resizing instance to {change.fields['type']}",
            entity_id=instance_id,
            operation="resize_instance",
        )
        poller.wait_for_event_finished(
            self.api,
            instance_id,
            "linode_resize",
            since,
            self.settings.update_timeout,
            interval=self.settings.poll_interval,
        )
        self.pending_reboot = True

    def _activate_private_ip(self, instance_id: int, change: Change | None) -> None:
        if change is None:
            return
        address = self.api.add_private_address(instance_id)
        self.private_ip_address = address.get("address")
        nf_logger.info(
            f"Activated private networking ({self.private_ip_address})",
            entity_id=instance_id,
            operation="add_private_address",
        )
        self.pending_reboot = True

    def _reconcile_disks(self, instance_id: int, changes: list[Change], observed: InstanceState) -> None:
        self.disk_ids = {disk.label: disk.id for disk in observed.disks or [] if disk.id is not None}
        for change in changes:
            assert change.target is not None
            if change.kind is ChangeKind.RESIZE:
                since = _now()
                self.api.resize_disk(instance_id, change.fields["disk_id"], change.fields["size"])
                nf_logger.info(
                    f"Resizing disk '{change.target}' to {change.fields['size']}MB",
                    entity_id=instance_id,
                    operation="resize_disk",
                )
                poller.wait_for_event_finished(
                    self.api,
                    instance_id,
                    "disk_resize",
                    since,
                    self.settings.update_timeout,
                    interval=self.settings.poll_interval,
                )
                self.pending_reboot = True
            elif change.kind is ChangeKind.CREATE:
                since = _now()
                created = self.api.create_disk(instance_id, **change.fields)
                self.disk_ids[change.target] = created["id"]
                nf_logger.info(
                    f"Created disk '{change.target}' ({created['id']})",
                    entity_id=instance_id,
                    operation="create_disk",
                )
                poller.wait_for_event_finished(
                    self.api,
                    instance_id,
                    "disk_create",
                    since,
                    self.settings.update_timeout,
                    interval=self.settings.poll_interval,
                )
                self.pending_reboot = True

    def _resolve_devices(self, instance_id: int, devices: DeviceMap | None) -> DeviceMap | None:
        if devices is None:
            return None
        resolved = devices.resolve(self.disk_ids, entity_id=instance_id)
        detach_config_volumes(
            self.api,
            resolved,
            instance_id,
            timeout=self.settings.update_timeout,
            interval=self.settings.poll_interval,
        )
        return resolved

    def _reconcile_configs(
        self,
        instance_id: int,
        changes: list[Change],
        desired: InstanceState,
        observed: InstanceState,
    ) -> None:
        self.config_ids = {c.label: c.id for c in observed.configs or [] if c.id is not None}
        declared = {config.label: config for config in desired.configs or []}
        for change in changes:
            assert change.target is not None
            if change.kind is ChangeKind.UPDATE:
                payload: dict[str, Any] = {
                    k: v for k, v in change.fields.items() if k not in ("config_id", "devices")
                }
                if "devices" in change.fields:
                    resolved = self._resolve_devices(instance_id, change.fields["devices"])
                    assert resolved is not None
                    payload["devices"] = resolved.to_api()
                    if len(resolved) == 0:
                        payload["root_device"] = ""
                self.api.update_config(instance_id, change.fields["config_id"], **payload)
                nf_logger.info(
                    f"Updated config '{change.target}' {sorted(payload)}",
                    entity_id=instance_id,
                    operation="update_config",
                )
                if change.reboot:
                    self.pending_reboot = True
            elif change.kind is ChangeKind.CREATE:
                config: Config = declared[change.target]
                resolved = self._resolve_devices(instance_id, config.devices)
                created = self.api.create_config(instance_id, **config_spec(config, resolved))
                self.config_ids[change.target] = created["id"]
                nf_logger.info(
                    f"Created config '{change.target}' ({created['id']})",
                    entity_id=instance_id,
                    operation="create_config",
                )

    def _reboot(self, instance_id: int, boot_label: str | None) -> None:
        config_id = self.config_ids.get(boot_label) if boot_label else None
        since = _now()
        self.api.reboot_instance(instance_id, config_id)
        nf_logger.info(
            f"Rebooting into config '{boot_label}'",
            entity_id=instance_id,
            operation="reboot_instance",
        )
        poller.wait_for_event_finished(
            self.api,
            instance_id,
            "linode_reboot",
            since,
            self.settings.update_timeout,
            interval=self.settings.poll_interval,
        )
