"""Linode API v4 implementation of the Compute blueprint."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, NoReturn

import httpx

from nodeform.base.compute import ComputeBlueprint
from nodeform.base.config import LinodeConfig
from nodeform.base.exceptions import (
    InstanceNotFoundError,
    NotFoundError,
    RemoteCallError,
    VolumeNotFoundError,
)
from nodeform.base.retry import retry

_NOT_FOUND_MAP: dict[str, type[NotFoundError]] = {
    "instance": InstanceNotFoundError,
    "volume": VolumeNotFoundError,
}

# Only failures where the request cannot have reached the API are retried.
_TRANSIENT = (httpx.ConnectError, httpx.ConnectTimeout)


def _reasons(response: httpx.Response) -> str:
    try:
        errors = response.json().get("errors") or []
    except ValueError:
        return response.text or response.reason_phrase
    reasons = [
        f"[{e['field']}] {e.get('reason', '')}" if e.get("field") else str(e.get("reason", ""))
        for e in errors
    ]
    return "; ".join(reasons) or response.reason_phrase


def _handle(response: httpx.Response, msg: str, *, kind: str, entity_id: Any, operation: str) -> NoReturn:
    if response.status_code == 404:
        exc = _NOT_FOUND_MAP.get(kind, NotFoundError)
        raise exc(f"{msg}: not found", entity_id=entity_id, operation=operation)
    raise RemoteCallError(
        f"{msg}: {response.status_code} {_reasons(response)}",
        entity_id=entity_id,
        operation=operation,
        status_code=response.status_code,
    )


def _format_since(since: datetime) -> str:
    if since.tzinfo is not None:
        since = since.astimezone(timezone.utc).replace(tzinfo=None)
    return since.strftime("%Y-%m-%dT%H:%M:%S")


class Compute(ComputeBlueprint):
    """Linode compute service.

    Attributes:
        client: ``httpx.Client`` bound to the API base URL.
        page_size: Page size used for list endpoints.
    """

    def __init__(self, config: LinodeConfig | dict[str, Any]) -> None:
        """Initialize the HTTP client.

        Args:
            config: Validated :class:`LinodeConfig`, or a dict to validate
                (``token``, ``api_url``, ``http_timeout``, ``page_size``).
        """
        if not isinstance(config, LinodeConfig):
            config = LinodeConfig(**config)
        self.page_size = config.page_size
        self.client = httpx.Client(
            base_url=config.api_url,
            headers={
                "Authorization": f"Bearer {config.token}",
                "Accept": "application/json",
                "User-Agent": "nodeform",
            },
            timeout=config.http_timeout,
        )

    def close(self) -> None:
        self.client.close()

    # --- transport ---

    @retry(max_attempts=3, base_delay=1.0, retryable_exceptions=_TRANSIENT)
    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return self.client.request(method, path, **kwargs)

    def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        entity_id: Any = None,
        kind: str = "instance",
        **kwargs: Any,
    ) -> Any:
        try:
            response = self._send(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteCallError(
                f"{method} {path} failed: {e}",
                entity_id=entity_id,
                operation=operation,
            ) from e
        if response.is_error:
            _handle(response, f"{method} {path}", kind=kind, entity_id=entity_id, operation=operation)
        if not response.content:
            return {}
        return response.json()

    def _paginate(
        self,
        path: str,
        *,
        operation: str,
        entity_id: Any = None,
        headers: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            body = self._request(
                "GET",
                path,
                operation=operation,
                entity_id=entity_id,
                params={"page": page, "page_size": self.page_size},
                headers=headers,
            )
            items.extend(body.get("data", []))
            if page >= body.get("pages", 1):
                return items
            page += 1

    # --- instance lifecycle ---

    def create_instance(self, **options: Any) -> dict[str, Any]:
        """Create a Linode instance.

        Raises:
            RemoteCallError: On API failure.
        """
        return self._request("POST", "/linode/instances", operation="create_instance", json=options)  # type: ignore[no-any-return]

    def get_instance(self, instance_id: int) -> dict[str, Any]:
        """Get a single instance.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
        """
        return self._request(  # type: ignore[no-any-return]
            "GET", f"/linode/instances/{instance_id}", operation="get_instance", entity_id=instance_id
        )

    def update_instance(self, instance_id: int, **fields: Any) -> dict[str, Any]:
        return self._request(  # type: ignore[no-any-return]
            "PUT",
            f"/linode/instances/{instance_id}",
            operation="update_instance",
            entity_id=instance_id,
            json=fields,
        )

    def delete_instance(self, instance_id: int) -> None:
        """Delete an instance.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
        """
        self._request(
            "DELETE", f"/linode/instances/{instance_id}", operation="delete_instance", entity_id=instance_id
        )

    def boot_instance(self, instance_id: int, config_id: int | None = None) -> None:
        body = {"config_id": config_id} if config_id is not None else {}
        self._request(
            "POST", f"/linode/instances/{instance_id}/boot", operation="boot_instance", entity_id=instance_id, json=body
        )

    def reboot_instance(self, instance_id: int, config_id: int | None = None) -> None:
        body = {"config_id": config_id} if config_id is not None else {}
        self._request(
            "POST",
            f"/linode/instances/{instance_id}/reboot",
            operation="reboot_instance",
            entity_id=instance_id,
            json=body,
        )

    def resize_instance(self, instance_id: int, instance_type: str) -> None:
        self._request(
            "POST",
            f"/linode/instances/{instance_id}/resize",
            operation="resize_instance",
            entity_id=instance_id,
            json={"type": instance_type},
        )

    def enable_backups(self, instance_id: int) -> None:
        self._request(
            "POST",
            f"/linode/instances/{instance_id}/backups/enable",
            operation="enable_backups",
            entity_id=instance_id,
        )

    def cancel_backups(self, instance_id: int) -> None:
        self._request(
            "POST",
            f"/linode/instances/{instance_id}/backups/cancel",
            operation="cancel_backups",
            entity_id=instance_id,
        )

    # --- networking ---

    def get_ip_addresses(self, instance_id: int) -> dict[str, Any]:
        return self._request(  # type: ignore[no-any-return]
            "GET", f"/linode/instances/{instance_id}/ips", operation="get_ip_addresses", entity_id=instance_id
        )

    def add_private_address(self, instance_id: int) -> dict[str, Any]:
        return self._request(  # type: ignore[no-any-return]
            "POST",
            f"/linode/instances/{instance_id}/ips",
            operation="add_private_address",
            entity_id=instance_id,
            json={"type": "ipv4", "public": False},
        )

    # --- disks ---

    def list_disks(self, instance_id: int) -> list[dict[str, Any]]:
        return self._paginate(f"/linode/instances/{instance_id}/disks", operation="list_disks", entity_id=instance_id)

    def create_disk(self, instance_id: int, **spec: Any) -> dict[str, Any]:
        return self._request(  # type: ignore[no-any-return]
            "POST",
            f"/linode/instances/{instance_id}/disks",
            operation="create_disk",
            entity_id=instance_id,
            json=spec,
        )

    def resize_disk(self, instance_id: int, disk_id: int, size: int) -> None:
        self._request(
            "POST",
            f"/linode/instances/{instance_id}/disks/{disk_id}/resize",
            operation="resize_disk",
            entity_id=instance_id,
            json={"size": size},
        )

    # --- configs ---

    def list_configs(self, instance_id: int) -> list[dict[str, Any]]:
        return self._paginate(
            f"/linode/instances/{instance_id}/configs", operation="list_configs", entity_id=instance_id
        )

    def create_config(self, instance_id: int, **spec: Any) -> dict[str, Any]:
        return self._request(  # type: ignore[no-any-return]
            "POST",
            f"/linode/instances/{instance_id}/configs",
            operation="create_config",
            entity_id=instance_id,
            json=spec,
        )

    def update_config(self, instance_id: int, config_id: int, **spec: Any) -> dict[str, Any]:
        return self._request(  # type: ignore[no-any-return]
            "PUT",
            f"/linode/instances/{instance_id}/configs/{config_id}",
            operation="update_config",
            entity_id=instance_id,
            json=spec,
        )

    # --- volumes ---

    def get_volume(self, volume_id: int) -> dict[str, Any]:
        """Get a volume.

        Raises:
            VolumeNotFoundError: If the volume does not exist.
        """
        return self._request(  # type: ignore[no-any-return]
            "GET", f"/volumes/{volume_id}", operation="get_volume", kind="volume"
        )

    def detach_volume(self, volume_id: int) -> None:
        self._request("POST", f"/volumes/{volume_id}/detach", operation="detach_volume", kind="volume")

    # --- events ---

    def list_events(
        self,
        entity_id: int,
        *,
        entity_type: str = "linode",
        action: str | None = None,
        since: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """List account events for an entity, newest first.

        Filtering happens server side through the ``X-Filter`` header.
        """
        filters: dict[str, Any] = {
            "entity.id": entity_id,
            "entity.type": entity_type,
            "+order_by": "created",
            "+order": "desc",
        }
        if action is not None:
            filters["action"] = action
        if since is not None:
            filters["created"] = {"+gte": _format_since(since)}
        return self._paginate(
            "/account/events",
            operation="list_events",
            entity_id=entity_id,
            headers={"X-Filter": json.dumps(filters)},
        )
