"""Tests for the delete orchestrator and the instance resource entry point."""

from datetime import datetime, timezone
from unittest.mock import patch
import pytest

from nodeform.base.exceptions import InstanceNotFoundError, MalformedStateError, RemoteCallError
from nodeform.instance.delete import DeleteOrchestrator
from nodeform.instance.resource import InstanceResource

from conftest import raw_instance

IMAGE_DEPLOYMENT = {
    "region": "us-east",
    "type": "g6-standard-1",
    "label": "web",
    "image": "linode/debian12",
    "root_pass": "s3cret!",
}


@pytest.fixture
def resource(api, settings):
    api.create_instance.return_value = {"id": 123, "created": "2024-01-01T00:00:00"}
    return InstanceResource(api, settings)


# --- delete ---

class TestDelete:
    def test_delete_waits_for_event(self, api, settings):
        assert DeleteOrchestrator(api, settings).run(123) is True
        api.delete_instance.assert_called_once_with(123)
        assert api.list_events.call_args.kwargs["action"] == "linode_delete"

    def test_wait_window_opens_before_delete(self, api, settings):
        calls = []
        stamp = datetime(2024, 1, 1, 12, 0, 0, 700000, tzinfo=timezone.utc)

        def now():
            calls.append("now")
            return stamp

        api.delete_instance.side_effect = lambda *args: calls.append("delete")
        settings.delete_timeout = 0
        with patch("nodeform.instance.delete._now", side_effect=now):
            assert DeleteOrchestrator(api, settings).run(123) is True
        assert calls == ["now", "delete"]
        assert api.list_events.call_args.kwargs["since"] == stamp.replace(microsecond=0)

    def test_already_gone(self, api, settings):
        api.delete_instance.side_effect = InstanceNotFoundError("gone", entity_id=123)
        assert DeleteOrchestrator(api, settings).run(123) is False
        api.list_events.assert_not_called()

    def test_wait_timeout_still_succeeds(self, api, settings):
        api.list_events.side_effect = None
        api.list_events.return_value = []
        settings.delete_timeout = 0
        assert DeleteOrchestrator(api, settings).run(123) is True

    def test_delete_call_failure_propagates(self, api, settings):
        api.delete_instance.side_effect = RemoteCallError("forbidden", status_code=403)
        with pytest.raises(RemoteCallError):
            DeleteOrchestrator(api, settings).run(123)


# --- read / import ---

class TestRead:
    def test_read(self, api, resource):
        state = resource.read("123")
        assert state.id == "123"
        assert [d.label for d in state.disks] == ["boot", "swap"]
        api.get_instance.assert_called_with(123)

    def test_read_missing_clears_identity(self, api, resource):
        api.get_instance.side_effect = InstanceNotFoundError("gone", entity_id=123)
        assert resource.read("123") is None

    def test_read_malformed_id(self, resource):
        with pytest.raises(MalformedStateError):
            resource.read("not-a-number")

    def test_exists(self, api, resource):
        assert resource.exists(123) is True
        api.get_instance.side_effect = InstanceNotFoundError("gone")
        assert resource.exists(123) is False

    def test_import_missing(self, api, resource):
        api.get_instance.side_effect = InstanceNotFoundError("gone")
        with pytest.raises(InstanceNotFoundError):
            resource.import_instance("123")


# --- plan / apply ---

class TestPlanApply:
    def test_plan_without_id_means_create(self, api, resource):
        assert resource.plan(IMAGE_DEPLOYMENT) is None
        api.get_instance.assert_not_called()

    def test_plan_reports_changes(self, api, resource):
        plan = resource.plan(dict(IMAGE_DEPLOYMENT, label="web2"), "123")
        assert plan.attributes.fields == {"label": "web2"}
        _mutations_not_called(api)

    def test_apply_creates(self, api, resource):
        state = resource.apply(IMAGE_DEPLOYMENT)
        api.create_instance.assert_called_once()
        assert state.ip_address == "203.0.113.10"

    def test_apply_creates_when_missing(self, api, resource):
        api.get_instance.side_effect = [InstanceNotFoundError("gone"), raw_instance(), raw_instance()]
        resource.apply(IMAGE_DEPLOYMENT, "999")
        api.create_instance.assert_called_once()

    def test_apply_updates_in_place(self, api, resource):
        resource.apply(dict(IMAGE_DEPLOYMENT, label="web2"), "123")
        api.update_instance.assert_called_once_with(123, label="web2")
        api.create_instance.assert_not_called()

    def test_apply_recreates_on_region_change(self, api, resource):
        resource.apply(dict(IMAGE_DEPLOYMENT, region="eu-west"), "123")
        api.delete_instance.assert_called_once_with(123)
        assert api.create_instance.call_args.kwargs["region"] == "eu-west"

    def test_delete(self, api, resource):
        assert resource.delete("123") is True
        api.delete_instance.assert_called_once_with(123)

    def test_connection_info(self, api, resource):
        assert resource.connection_info("123") == {"type": "ssh", "host": "203.0.113.10"}
        api.get_instance.side_effect = InstanceNotFoundError("gone")
        assert resource.connection_info("123") == {}


def _mutations_not_called(api):
    for name in ("create_instance", "update_instance", "delete_instance", "reboot_instance", "update_config"):
        getattr(api, name).assert_not_called()
