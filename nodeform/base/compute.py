"""Compute (instance) API blueprint."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any


class ComputeBlueprint(ABC):
    """Abstract interface for the remote compute provider.

    The reconciliation engine only talks to this interface. Every method
    returns the provider's raw JSON representation (``dict``) so the
    normalizer stays the single place that interprets it.

    Implementations must raise :class:`~nodeform.base.exceptions.NotFoundError`
    subclasses for missing entities and
    :class:`~nodeform.base.exceptions.RemoteCallError` for every other
    failure, with ``entity_id`` and ``operation`` filled in. Write calls
    are asynchronous on the provider side: success means "accepted".
    """

    # --- Instance lifecycle ---

    @abstractmethod
    def create_instance(self, **options: Any) -> dict[str, Any]:
        """Create an instance and return it.

        Args:
            **options: ``region``, ``type``, ``label``, ``group``,
                ``backups_enabled``, ``private_ip``, ``booted`` and, for an
                image deployment, ``image``, ``root_pass``,
                ``authorized_keys``, ``backup_id``, ``swap_size``,
                ``stackscript_id``, ``stackscript_data``.

        Returns:
            Dict with at least ``id``, ``created`` and ``ipv4``.
        """

    @abstractmethod
    def get_instance(self, instance_id: int) -> dict[str, Any]:
        """Return a single instance.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
        """

    @abstractmethod
    def update_instance(self, instance_id: int, **fields: Any) -> dict[str, Any]:
        """Update live-mutable attributes (label, group, watchdog, alerts)."""

    @abstractmethod
    def delete_instance(self, instance_id: int) -> None:
        """Delete an instance."""

    @abstractmethod
    def boot_instance(self, instance_id: int, config_id: int | None = None) -> None:
        """Boot an instance into the given config."""

    @abstractmethod
    def reboot_instance(self, instance_id: int, config_id: int | None = None) -> None:
        """Reboot an instance into the given config."""

    @abstractmethod
    def resize_instance(self, instance_id: int, instance_type: str) -> None:
        """Migrate an instance to another type (size class)."""

    @abstractmethod
    def enable_backups(self, instance_id: int) -> None:
        """Enroll the instance in the backup service."""

    @abstractmethod
    def cancel_backups(self, instance_id: int) -> None:
        """Cancel the backup service for the instance."""

    # --- Networking ---

    @abstractmethod
    def get_ip_addresses(self, instance_id: int) -> dict[str, Any]:
        """Return the instance's network addresses.

        Returns:
            Dict shaped like ``{"ipv4": {"public": [...], "private": [...]},
            "ipv6": {...}}`` where each address entry has an ``address`` key.
        """

    @abstractmethod
    def add_private_address(self, instance_id: int) -> dict[str, Any]:
        """Allocate a private IPv4 address and return it."""

    # --- Disks ---

    @abstractmethod
    def list_disks(self, instance_id: int) -> list[dict[str, Any]]:
        """List an instance's disks in creation order."""

    @abstractmethod
    def create_disk(self, instance_id: int, **spec: Any) -> dict[str, Any]:
        """Create a disk.

        Args:
            **spec: ``label``, ``size``, ``filesystem``, ``read_only``,
                ``image``, ``root_pass``, ``authorized_keys``,
                ``stackscript_id``, ``stackscript_data``.
        """

    @abstractmethod
    def resize_disk(self, instance_id: int, disk_id: int, size: int) -> None:
        """Resize a disk (MB)."""

    # --- Configs ---

    @abstractmethod
    def list_configs(self, instance_id: int) -> list[dict[str, Any]]:
        """List an instance's boot configs in creation order."""

    @abstractmethod
    def create_config(self, instance_id: int, **spec: Any) -> dict[str, Any]:
        """Create a boot config.

        Args:
            **spec: ``label``, ``kernel``, ``run_level``, ``virt_mode``,
                ``root_device``, ``comments``, ``memory_limit``,
                ``helpers``, ``devices``.
        """

    @abstractmethod
    def update_config(self, instance_id: int, config_id: int, **spec: Any) -> dict[str, Any]:
        """Update a boot config in place."""

    # --- Volumes ---

    @abstractmethod
    def get_volume(self, volume_id: int) -> dict[str, Any]:
        """Return a volume, including the ``linode_id`` it is attached to."""

    @abstractmethod
    def detach_volume(self, volume_id: int) -> None:
        """Detach a volume from whichever instance holds it."""

    # --- Events ---

    @abstractmethod
    def list_events(
        self,
        entity_id: int,
        *,
        entity_type: str = "linode",
        action: str | None = None,
        since: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """List asynchronous events for an entity.

        Each dict contains at least ``id``, ``action``, ``status``,
        ``created`` and ``entity`` (``{"id": ..., "type": ...}``).
        """
