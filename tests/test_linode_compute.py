"""Tests for the Linode API v4 Compute client."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch
import json
import httpx
import pytest

from nodeform.base.exceptions import (
    InstanceNotFoundError,
    RemoteCallError,
    VolumeNotFoundError,
)
from nodeform.linode.compute import Compute


def _response(status_code=200, body=None):
    if body is None:
        return httpx.Response(status_code)
    return httpx.Response(status_code, json=body)


@pytest.fixture
def svc():
    with patch("nodeform.linode.compute.httpx.Client") as mock_cls:
        mock_client = MagicMock()
        mock_cls.return_value = mock_client
        instance = Compute({"token": "tok", "api_url": "https://api.example.test/v4"})
        yield instance, mock_client


# --- construction ---

class TestInit:
    def test_client_configured(self, monkeypatch):
        monkeypatch.delenv("LINODE_URL", raising=False)
        with patch("nodeform.linode.compute.httpx.Client") as mock_cls:
            Compute({"token": "tok", "http_timeout": 12})
        kwargs = mock_cls.call_args.kwargs
        assert kwargs["base_url"] == "https://api.linode.com/v4"
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["timeout"] == 12

    def test_missing_token(self, monkeypatch):
        monkeypatch.delenv("LINODE_TOKEN", raising=False)
        with pytest.raises(ValueError):
            Compute({})


# --- instances ---

class TestInstances:
    def test_create_instance(self, svc):
        inst, client = svc
        client.request.return_value = _response(200, {"id": 123, "created": "2024-01-01T00:00:00"})
        created = inst.create_instance(region="us-east", type="g6-standard-1", booted=False)
        assert created["id"] == 123
        client.request.assert_called_once_with(
            "POST", "/linode/instances", json={"region": "us-east", "type": "g6-standard-1", "booted": False}
        )

    def test_get_instance_not_found(self, svc):
        inst, client = svc
        client.request.return_value = _response(404, {"errors": [{"reason": "Not found"}]})
        with pytest.raises(InstanceNotFoundError) as exc_info:
            inst.get_instance(999)
        assert exc_info.value.entity_id == 999
        assert exc_info.value.operation == "get_instance"

    def test_api_error(self, svc):
        inst, client = svc
        client.request.return_value = _response(
            400, {"errors": [{"field": "size", "reason": "Disk size exceeds plan"}]}
        )
        with pytest.raises(RemoteCallError, match="Disk size exceeds plan") as exc_info:
            inst.resize_disk(123, 11, 999999)
        assert exc_info.value.status_code == 400

    def test_empty_body(self, svc):
        inst, client = svc
        client.request.return_value = _response(200)
        assert inst.delete_instance(123) is None
        client.request.assert_called_once_with("DELETE", "/linode/instances/123")

    def test_boot_with_config(self, svc):
        inst, client = svc
        client.request.return_value = _response(200, {})
        inst.boot_instance(123, 77)
        client.request.assert_called_once_with("POST", "/linode/instances/123/boot", json={"config_id": 77})

    def test_add_private_address(self, svc):
        inst, client = svc
        client.request.return_value = _response(200, {"address": "192.168.1.5"})
        assert inst.add_private_address(123)["address"] == "192.168.1.5"
        assert client.request.call_args.kwargs["json"] == {"type": "ipv4", "public": False}


# --- transport ---

class TestTransport:
    def test_connect_error_retried(self, svc):
        inst, client = svc
        client.request.side_effect = [httpx.ConnectError("refused"), _response(200, {"id": 123})]
        with patch("nodeform.base.retry.time.sleep"):
            assert inst.get_instance(123) == {"id": 123}
        assert client.request.call_count == 2

    def test_connect_error_exhausted(self, svc):
        inst, client = svc
        client.request.side_effect = httpx.ConnectError("refused")
        with patch("nodeform.base.retry.time.sleep"):
            with pytest.raises(RemoteCallError):
                inst.get_instance(123)
        assert client.request.call_count == 3

    def test_read_timeout_not_retried(self, svc):
        inst, client = svc
        client.request.side_effect = httpx.ReadTimeout("slow")
        with pytest.raises(RemoteCallError):
            inst.resize_instance(123, "g6-standard-2")
        assert client.request.call_count == 1


# --- lists ---

class TestPagination:
    def test_pages_are_followed(self, svc):
        inst, client = svc
        client.request.side_effect = [
            _response(200, {"data": [{"id": 11}], "page": 1, "pages": 2}),
            _response(200, {"data": [{"id": 12}], "page": 2, "pages": 2}),
        ]
        disks = inst.list_disks(123)
        assert [d["id"] for d in disks] == [11, 12]
        assert client.request.call_args_list[1].kwargs["params"] == {"page": 2, "page_size": 100}

    def test_list_events_filter(self, svc):
        inst, client = svc
        client.request.return_value = _response(200, {"data": [], "page": 1, "pages": 1})
        since = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        inst.list_events(123, action="disk_create", since=since)
        call = client.request.call_args
        assert call.args == ("GET", "/account/events")
        filters = json.loads(call.kwargs["headers"]["X-Filter"])
        assert filters["entity.id"] == 123
        assert filters["entity.type"] == "linode"
        assert filters["action"] == "disk_create"
        assert filters["created"] == {"+gte": "2024-01-01T12:00:00"}


# --- volumes ---

class TestVolumes:
    def test_volume_not_found(self, svc):
        inst, client = svc
        client.request.return_value = _response(404, {"errors": [{"reason": "Not found"}]})
        with pytest.raises(VolumeNotFoundError):
            inst.get_volume(5)

    def test_detach(self, svc):
        inst, client = svc
        client.request.return_value = _response(200, {})
        inst.detach_volume(5)
        client.request.assert_called_once_with("POST", "/volumes/5/detach")
