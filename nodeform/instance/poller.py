"""
Remote state poller.

Provider write calls only mean "accepted"; the entity reaches its new
stable state once an asynchronous event finishes. These helpers block
the calling flow until a predicate holds or the deadline passes.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, TypeVar

from nodeform.base.compute import ComputeBlueprint
from nodeform.base.exceptions import PollTimeoutError, RemoteActionFailedError
from nodeform.instance.normalize import parse_timestamp

logger = logging.getLogger("nodeform")

T = TypeVar("T")

DEFAULT_INTERVAL = 3.0


def wait_until(
    check: Callable[[], T | None],
    *,
    timeout: float,
    interval: float = DEFAULT_INTERVAL,
    description: str,
    entity_id: Any = None,
    operation: str | None = None,
) -> T:
    """Call ``check`` until it returns something other than None.

    ``check`` is always called at least once, even with a zero timeout.
    Exceptions raised by ``check`` propagate immediately.

    Raises:
        PollTimeoutError: If the deadline passes first.
    """
    deadline = time.monotonic() + timeout
    while True:
        result = check()
        if result is not None:
            return result
        if time.monotonic() >= deadline:
            raise PollTimeoutError(
                f"timed out after {timeout}s waiting for {description}",
                entity_id=entity_id,
                operation=operation,
            )
        time.sleep(interval)


def wait_for_event_finished(
    api: ComputeBlueprint,
    entity_id: int,
    action: str,
    since: datetime,
    timeout: float,
    *,
    entity_type: str = "linode",
    interval: float = DEFAULT_INTERVAL,
) -> dict[str, Any]:
    """Block until the named action on ``entity_id`` finishes.

    Only events created at or after ``since`` are considered, so a
    finished event from an earlier operation never satisfies the wait.
    Event timestamps have whole-second precision, so ``since`` is
    truncated to the second to match the server-side filter.

    Returns:
        The finished event.

    Raises:
        RemoteActionFailedError: If the provider reports the event as failed.
        PollTimeoutError: If no matching event finishes in time.
    """
    since = parse_timestamp(since).replace(microsecond=0)

    def check() -> dict[str, Any] | None:
        events = api.list_events(entity_id, entity_type=entity_type, action=action, since=since)
        for event in events:
            entity = event.get("entity") or {}
            if entity.get("id") != entity_id or event.get("action") != action:
                continue
            if event.get("created") and parse_timestamp(event["created"]) < since:
                continue
            status = event.get("status")
            if status == "failed":
                raise RemoteActionFailedError(
                    f"{action} event {event.get('id')} failed",
                    entity_id=entity_id,
                    operation=action,
                )
            if status == "finished":
                return event
            logger.debug("%s on %s %s is %s", action, entity_type, entity_id, status)
        return None

    return wait_until(
        check,
        timeout=timeout,
        interval=interval,
        description=f"{action} to finish",
        entity_id=entity_id,
        operation=action,
    )


def wait_for_status(
    api: ComputeBlueprint,
    instance_id: int,
    status: str,
    timeout: float,
    *,
    interval: float = DEFAULT_INTERVAL,
) -> dict[str, Any]:
    """Block until the instance reports ``status``.

    Returns:
        The instance as last fetched.
    """

    def check() -> dict[str, Any] | None:
        instance = api.get_instance(instance_id)
        return instance if instance.get("status") == status else None

    return wait_until(
        check,
        timeout=timeout,
        interval=interval,
        description=f"status '{status}'",
        entity_id=instance_id,
        operation="wait_for_status",
    )


def wait_for_volume_detached(
    api: ComputeBlueprint,
    volume_id: int,
    timeout: float,
    *,
    interval: float = DEFAULT_INTERVAL,
) -> dict[str, Any]:
    """Block until the volume is no longer attached to any instance."""

    def check() -> dict[str, Any] | None:
        volume = api.get_volume(volume_id)
        return volume if volume.get("linode_id") is None else None

    return wait_until(
        check,
        timeout=timeout,
        interval=interval,
        description=f"volume {volume_id} to detach",
        operation="detach_volume",
    )
