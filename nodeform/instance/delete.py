"""Delete/teardown orchestrator."""

from __future__ import annotations

from datetime import datetime, timezone

from nodeform.base.compute import ComputeBlueprint
from nodeform.base.config import ReconcileSettings
from nodeform.base.exceptions import NotFoundError, PollTimeoutError, RemoteCallError
from nodeform.base.logger import nf_logger
from nodeform.instance import poller


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DeleteOrchestrator:
    """Deletes an instance and waits, best effort, for the teardown to finish.

    The wait only matters for ordering against other resources (volumes
    are detached once the delete event finishes), so a timeout or a
    failed event is logged rather than raised.
    """

    def __init__(self, api: ComputeBlueprint, settings: ReconcileSettings | None = None) -> None:
        self.api = api
        self.settings = settings or ReconcileSettings()

    def run(self, instance_id: int) -> bool:
        """Delete ``instance_id``.

        Returns:
            True if the delete was issued, False if the instance was already gone.

        Raises:
            RemoteCallError: If the delete call itself fails.
        """
        since = _now()
        try:
            self.api.delete_instance(instance_id)
        except NotFoundError:
            nf_logger.info("Instance already deleted", entity_id=instance_id, operation="delete_instance")
            return False
        nf_logger.info("Deleted instance", entity_id=instance_id, operation="delete_instance")

        try:
            poller.wait_for_event_finished(
                self.api,
                instance_id,
                "linode_delete",
                since,
                self.settings.delete_timeout,
                interval=self.settings.poll_interval,
            )
        except (PollTimeoutError, RemoteCallError) as e:
            nf_logger.warning(
                f"Gave up waiting for the delete to finish: {e}",
                entity_id=instance_id,
                operation="delete_instance",
            )
        return True
