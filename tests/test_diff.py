"""Tests for the diff engine."""

import pytest

from nodeform.base.config import UnmatchedConfigPolicy
from nodeform.base.exceptions import (
    BootConfigNotFoundError,
    DuplicateLabelError,
    FilesystemChangeError,
    NoConfigError,
    UnknownDiskLabelError,
    UnmatchedConfigError,
    UnsupportedChangeError,
)
from nodeform.instance.diff import (
    ChangeKind,
    diff_attributes,
    diff_disks,
    diff_instance,
    diff_private_ip,
    resolve_boot_label,
)
from nodeform.instance.models import Alerts, Config, DeviceMap, Disk, InstanceState
from nodeform.instance.normalize import normalize_desired, normalize_observed, to_desired

from conftest import RAW_ADDRESSES, raw_configs, raw_disks, raw_instance


@pytest.fixture
def observed():
    return normalize_observed(raw_instance(), raw_disks(), raw_configs(), RAW_ADDRESSES)


def _desired(observed, **changes):
    record = to_desired(observed)
    record.update(changes)
    return normalize_desired(record)


# --- instance attributes ---

class TestDiffAttributes:
    def test_noop(self, observed):
        plan = diff_instance(_desired(observed), observed)
        assert plan.is_noop
        assert not plan.reboot_required

    def test_batched_update(self, observed):
        desired = _desired(observed, label="web2", group="prod", alerts={"cpu": 50})
        change = diff_attributes(desired, observed)
        assert change.kind is ChangeKind.UPDATE
        assert change.fields == {"label": "web2", "group": "prod", "alerts": {"cpu": 50}}
        assert not change.reboot

    def test_unset_fields_unmanaged(self, observed):
        desired = InstanceState(alerts=Alerts(io=10000))
        assert diff_attributes(desired, observed) is None

    def test_type_change_requires_reboot(self, observed):
        plan = diff_instance(_desired(observed, type="g6-standard-2"), observed)
        assert plan.type_change.kind is ChangeKind.MIGRATE
        assert plan.reboot_required

    def test_backups(self, observed):
        plan = diff_instance(_desired(observed, backups_enabled=True), observed)
        assert plan.backups.fields == {"backups_enabled": True}

    def test_region_change_recreates(self, observed):
        plan = diff_instance(_desired(observed, region="eu-west", label="other"), observed)
        assert plan.recreate.kind is ChangeKind.RECREATE
        assert plan.attributes is None
        assert plan.disks == []


class TestDiffPrivateIP:
    def test_activation(self, observed):
        change = diff_private_ip(InstanceState(private_ip=True), observed)
        assert change.fields == {"private_ip": True}
        assert change.reboot

    def test_removal_unsupported(self, observed):
        observed.private_ip = True
        with pytest.raises(UnsupportedChangeError):
            diff_private_ip(InstanceState(private_ip=False), observed)


# --- disks ---

class TestDiffDisks:
    def test_unchanged_disk_is_noop(self, observed):
        changes = diff_disks([Disk(label="boot", size=20000, filesystem="ext4")], observed.disks)
        assert [c.kind for c in changes] == [ChangeKind.NOOP]
        assert changes[0].fields == {"disk_id": 11}

    def test_resize(self, observed):
        changes = diff_disks([Disk(label="boot", size=30000)], observed.disks)
        assert changes[0].kind is ChangeKind.RESIZE
        assert changes[0].fields == {"disk_id": 11, "size": 30000}
        assert changes[0].reboot

    def test_filesystem_change_rejected(self, observed):
        with pytest.raises(FilesystemChangeError):
            diff_disks([Disk(label="boot", size=20000, filesystem="ext3")], observed.disks)

    def test_new_disk_created(self, observed):
        changes = diff_disks([Disk(label="data", size=1024, filesystem="ext4")], observed.disks)
        assert changes[0].kind is ChangeKind.CREATE
        assert changes[0].fields == {"label": "data", "size": 1024, "filesystem": "ext4"}

    def test_duplicate_labels(self, observed):
        disks = [Disk(label="boot", size=1), Disk(label="boot", size=2)]
        with pytest.raises(DuplicateLabelError):
            diff_disks(disks, observed.disks)

    def test_undeclared_disks_untouched(self, observed):
        assert diff_disks([], observed.disks) == []


# --- configs ---

class TestDiffConfigs:
    def test_field_update(self, observed):
        record = to_desired(observed)
        record["configs"][0]["kernel"] = "linode/grub2"
        plan = diff_instance(normalize_desired(record), observed)
        assert plan.configs[0].kind is ChangeKind.UPDATE
        assert plan.configs[0].fields == {"config_id": 77, "kernel": "linode/grub2"}
        assert not plan.configs[0].reboot

    def test_device_change_requires_reboot(self, observed):
        record = to_desired(observed)
        record["configs"][0]["devices"] = {"sda": {"disk_label": "swap"}, "sdb": {"disk_label": "boot"}}
        plan = diff_instance(normalize_desired(record), observed)
        assert isinstance(plan.configs[0].fields["devices"], DeviceMap)
        assert plan.configs[0].reboot

    def test_device_on_pending_disk(self, observed):
        record = to_desired(observed)
        record["disks"].append({"label": "data", "size": 1024, "filesystem": "ext4"})
        record["configs"][0]["devices"]["sdc"] = {"disk_label": "data"}
        plan = diff_instance(normalize_desired(record), observed)
        assert plan.configs[0].kind is ChangeKind.UPDATE

    def test_unknown_device_label(self, observed):
        record = to_desired(observed)
        record["configs"][0]["devices"]["sdc"] = {"disk_label": "nope"}
        with pytest.raises(UnknownDiskLabelError):
            diff_instance(normalize_desired(record), observed)

    def test_unmatched_ignored_by_default(self, observed):
        record = to_desired(observed)
        record["configs"].append({"label": "rescue", "kernel": "linode/grub2"})
        plan = diff_instance(normalize_desired(record), observed)
        assert plan.unmatched_configs == ["rescue"]
        assert [c.target for c in plan.configs] == ["main"]

    def test_unmatched_error_policy(self, observed):
        record = to_desired(observed)
        record["configs"].append({"label": "rescue"})
        with pytest.raises(UnmatchedConfigError):
            diff_instance(normalize_desired(record), observed, policy=UnmatchedConfigPolicy.ERROR)

    def test_unmatched_create_policy(self, observed):
        record = to_desired(observed)
        record["configs"].append({"label": "rescue", "devices": {"sda": {"disk_label": "boot"}}})
        record["boot_config_label"] = "rescue"
        plan = diff_instance(normalize_desired(record), observed, policy=UnmatchedConfigPolicy.CREATE)
        created = plan.configs[-1]
        assert created.kind is ChangeKind.CREATE
        assert created.fields["label"] == "rescue"
        assert plan.boot_config_label == "rescue"


# --- boot config ---

class TestBootConfig:
    def test_first_config_by_default(self):
        assert resolve_boot_label(None, ["a", "b"]) == "a"

    def test_explicit_label(self):
        assert resolve_boot_label("b", ["a", "b"]) == "b"

    def test_missing_label(self):
        with pytest.raises(BootConfigNotFoundError):
            resolve_boot_label("c", ["a", "b"])

    def test_no_configs(self, observed):
        observed.configs = []
        with pytest.raises(NoConfigError):
            diff_instance(_desired(observed, configs=None), observed)

    def test_boot_follows_creation_order(self, observed):
        observed.configs = [Config(id=90, label="late"), Config(id=5, label="early")]
        observed.boot_config_label = None
        plan = diff_instance(InstanceState(label="web"), observed)
        assert plan.boot_config_label == "early"
