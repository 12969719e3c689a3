"""Instance resource: the create / read / update / delete entry point.

Wires the normalizer, diff engine and orchestrators to a
:class:`~nodeform.base.compute.ComputeBlueprint` implementation::

    from nodeform import InstanceResource
    from nodeform.linode import Compute

    resource = InstanceResource(Compute({"token": "..."}))
    state = resource.apply({"region": "us-east", "type": "g6-standard-1",
                            "image": "linode/debian12", "root_pass": "..."})
    resource.delete(state.id)
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from nodeform.base.compute import ComputeBlueprint
from nodeform.base.config import ReconcileSettings
from nodeform.base.exceptions import InstanceNotFoundError
from nodeform.base.logger import nf_logger
from nodeform.instance.create import CreateOrchestrator
from nodeform.instance.delete import DeleteOrchestrator
from nodeform.instance.diff import InstancePlan, diff_instance
from nodeform.instance.models import InstanceState
from nodeform.instance.normalize import connection_info, normalize_desired, normalize_observed, parse_instance_id
from nodeform.instance.update import UpdateOrchestrator

DesiredState = Mapping[str, Any] | InstanceState


class InstanceResource:
    """Idempotent lifecycle operations for one instance.

    Attributes:
        api: Remote API collaborator.
        settings: Timeouts and policies for the orchestrators.
    """

    def __init__(self, api: ComputeBlueprint, settings: ReconcileSettings | None = None) -> None:
        self.api = api
        self.settings = settings or ReconcileSettings()

    def observe(self, instance_id: int) -> InstanceState:
        """Fetch and normalize the full remote snapshot.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
        """
        instance = self.api.get_instance(instance_id)
        addresses = self.api.get_ip_addresses(instance_id)
        disks = self.api.list_disks(instance_id)
        configs = self.api.list_configs(instance_id)
        return normalize_observed(instance, disks, configs, addresses)

    def read(self, instance_id: str | int) -> InstanceState | None:
        """Return the observed state, or None when the instance is gone."""
        numeric_id = parse_instance_id(instance_id)
        try:
            return self.observe(numeric_id)
        except InstanceNotFoundError:
            nf_logger.warning("Instance no longer exists; clearing identity", entity_id=numeric_id, operation="read")
            return None

    def exists(self, instance_id: str | int) -> bool:
        numeric_id = parse_instance_id(instance_id)
        try:
            self.api.get_instance(numeric_id)
        except InstanceNotFoundError:
            return False
        return True

    def import_instance(self, instance_id: str | int) -> InstanceState:
        """Adopt an existing instance by id.

        Raises:
            InstanceNotFoundError: If there is nothing to import.
        """
        state = self.read(instance_id)
        if state is None:
            raise InstanceNotFoundError("cannot import a missing instance", entity_id=instance_id, operation="import")
        return state

    def create(self, desired: DesiredState) -> InstanceState:
        state = normalize_desired(desired)
        instance_id = CreateOrchestrator(self.api, self.settings).run(state)
        return self._read_back(instance_id, "create")

    def update(self, instance_id: str | int, desired: DesiredState) -> InstanceState:
        numeric_id = parse_instance_id(instance_id)
        state = normalize_desired(desired)
        observed = self.observe(numeric_id)
        UpdateOrchestrator(self.api, self.settings).run(state, observed)
        return self._read_back(numeric_id, "update")

    def delete(self, instance_id: str | int) -> bool:
        """Delete the instance; False means it was already gone."""
        return DeleteOrchestrator(self.api, self.settings).run(parse_instance_id(instance_id))

    def connection_info(self, instance_id: str | int) -> dict[str, str]:
        state = self.read(instance_id)
        return {} if state is None else connection_info(state)

    def plan(self, desired: DesiredState, instance_id: str | int | None = None) -> InstancePlan | None:
        """Diff without mutating anything; None means the instance has to be created."""
        state = normalize_desired(desired)
        observed = self.read(instance_id) if instance_id is not None else None
        if observed is None:
            return None
        return diff_instance(state, observed, policy=self.settings.unmatched_config_policy)

    def apply(self, desired: DesiredState, instance_id: str | int | None = None) -> InstanceState:
        """Create, recreate or update so the remote side matches ``desired``."""
        state = normalize_desired(desired)
        if instance_id is None or not self.exists(instance_id):
            return self.create(state)
        plan = self.plan(state, instance_id)
        if plan is not None and plan.recreate is not None:
            nf_logger.info(
                f"Recreating instance: {plan.recreate.fields}",
                entity_id=instance_id,
                operation="apply",
            )
            self.delete(instance_id)
            return self.create(state)
        return self.update(instance_id, state)

    def _read_back(self, instance_id: int, operation: str) -> InstanceState:
        state = self.read(instance_id)
        if state is None:
            raise InstanceNotFoundError("instance vanished after it was reconciled", entity_id=instance_id, operation=operation)
        return state
