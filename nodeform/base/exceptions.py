"""
Nodeform exception hierarchy.

Every error raised by the reconciliation engine or a remote API
collaborator inherits from :class:`NodeformError` and carries the
identity of the entity and the operation that was attempted, so the
rendered message always names both.
"""

from __future__ import annotations

from typing import Any


# ── Base ──────────────────────────────────────────────────────────────
class NodeformError(Exception):
    """Root exception for all Nodeform errors.

    Attributes:
        message: Human-readable description without context.
        entity_id: Remote id of the instance (or volume) involved.
        operation: Name of the operation being attempted.
    """

    def __init__(
        self,
        message: str,
        *,
        entity_id: Any = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id
        self.operation = operation

    def __str__(self) -> str:
        context = []
        if self.entity_id is not None:
            context.append(f"instance {self.entity_id}")
        if self.operation:
            context.append(self.operation)
        if not context:
            return self.message
        return f"[{' / '.join(context)}] {self.message}"


# ── Not found ─────────────────────────────────────────────────────────
class NotFoundError(NodeformError):
    """The remote entity does not exist (HTTP 404)."""


class InstanceNotFoundError(NotFoundError):
    """Instance not found."""


class VolumeNotFoundError(NotFoundError):
    """Block storage volume not found."""


# ── Validation conflicts ──────────────────────────────────────────────
class ValidationConflictError(NodeformError):
    """The requested change cannot be reconciled and is surfaced verbatim."""


class FilesystemChangeError(ValidationConflictError):
    """A disk's filesystem differs from the requested one."""


class UnsupportedChangeError(ValidationConflictError):
    """The provider does not support this transition (e.g. private IP removal)."""


class MalformedStateError(ValidationConflictError):
    """A desired-state record (or one of its device entries) cannot be parsed."""


class UnknownDiskLabelError(ValidationConflictError):
    """A device slot references a disk label that does not exist."""


class BootConfigNotFoundError(ValidationConflictError):
    """``boot_config_label`` names a config that does not exist."""


class UnmatchedConfigError(ValidationConflictError):
    """A desired config has no remote counterpart and the policy forbids it."""


# ── Remote calls ──────────────────────────────────────────────────────
class RemoteCallError(NodeformError):
    """A remote API call failed.

    Attributes:
        status_code: HTTP status of the failed response, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        entity_id: Any = None,
        operation: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, entity_id=entity_id, operation=operation)
        self.status_code = status_code


class RemoteActionFailedError(RemoteCallError):
    """An asynchronous remote action finished with a failed status."""


# ── Waiting ───────────────────────────────────────────────────────────
class PollTimeoutError(NodeformError):
    """A poller deadline passed before its predicate was satisfied."""


# ── Invariants ────────────────────────────────────────────────────────
class InvariantViolationError(NodeformError):
    """A structural invariant of the instance is broken."""


class DuplicateLabelError(InvariantViolationError):
    """Two disks or two configs share a label."""


class NoConfigError(InvariantViolationError):
    """No config would remain to boot the instance."""


class TooManyDevicesError(InvariantViolationError):
    """More devices than available config slots."""


# ── Provisioning ──────────────────────────────────────────────────────
class ProvisioningError(NodeformError):
    """A multi-step create stopped part way through.

    Nothing is rolled back; the attributes describe what already exists
    remotely so reconciliation can be resumed.

    Attributes:
        step: Create state that was active when the failure happened.
        disk_ids: Label → id of the disks created before the failure.
        config_ids: Label → id of the configs created before the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        step: str,
        entity_id: Any = None,
        disk_ids: dict[str, int] | None = None,
        config_ids: dict[str, int] | None = None,
    ) -> None:
        super().__init__(message, entity_id=entity_id, operation=f"create:{step}")
        self.step = step
        self.disk_ids = dict(disk_ids or {})
        self.config_ids = dict(config_ids or {})
