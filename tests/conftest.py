"""Shared fixtures: a mocked remote API and raw provider payloads."""

from unittest.mock import MagicMock
import copy
import pytest

from nodeform.base.compute import ComputeBlueprint
from nodeform.base.config import ReconcileSettings

INSTANCE_ID = 123

RAW_INSTANCE = {
    "id": INSTANCE_ID,
    "label": "web",
    "group": "",
    "region": "us-east",
    "type": "g6-standard-1",
    "status": "running",
    "image": "linode/debian12",
    "hypervisor": "kvm",
    "created": "2024-01-01T00:00:00",
    "ipv4": ["203.0.113.10"],
    "ipv6": "2600:3c03::f03c:91ff:fe24:3a2f/128",
    "watchdog_enabled": True,
    "alerts": {"cpu": 90, "network_in": 10, "network_out": 10, "transfer_quota": 80, "io": 10000},
    "specs": {"disk": 51200, "memory": 2048, "vcpus": 1, "transfer": 2000, "gpus": 0},
    "backups": {"enabled": False, "available": False, "schedule": {"day": None, "window": None}},
}

RAW_DISKS = [
    {"id": 11, "label": "boot", "size": 20000, "filesystem": "ext4", "status": "ready", "read_only": False},
    {"id": 12, "label": "swap", "size": 512, "filesystem": "swap", "status": "ready", "read_only": False},
]

_EMPTY_SLOTS = {slot: None for slot in ("sdc", "sdd", "sde", "sdf", "sdg", "sdh")}

RAW_CONFIGS = [
    {
        "id": 77,
        "label": "main",
        "kernel": "linode/latest-64bit",
        "run_level": "default",
        "virt_mode": "paravirt",
        "root_device": "/dev/sda",
        "comments": "",
        "memory_limit": 0,
        "helpers": {
            "updatedb_disabled": True,
            "distro": True,
            "modules_dep": True,
            "network": True,
            "devtmpfs_automount": True,
        },
        "devices": {
            "sda": {"disk_id": 11, "volume_id": None},
            "sdb": {"disk_id": 12, "volume_id": None},
            **_EMPTY_SLOTS,
        },
    }
]

RAW_ADDRESSES = {
    "ipv4": {
        "public": [{"address": "203.0.113.10", "public": True}],
        "private": [],
    }
}


def raw_instance(**overrides):
    data = copy.deepcopy(RAW_INSTANCE)
    data.update(overrides)
    return data


def raw_disks():
    return copy.deepcopy(RAW_DISKS)


def raw_configs():
    return copy.deepcopy(RAW_CONFIGS)


def finished_events(entity_id, *, entity_type="linode", action=None, since=None):
    """Stand-in for ``list_events`` that reports every requested action as finished.

    Events are stamped with whole seconds in the same second as ``since``,
    like the provider does for an action triggered right after it.
    """
    created = RAW_INSTANCE["created"] if since is None else since.strftime("%Y-%m-%dT%H:%M:%S")
    return [{
        "id": 1,
        "action": action,
        "status": "finished",
        "created": created,
        "entity": {"id": entity_id, "type": entity_type},
    }]


@pytest.fixture
def api():
    mock_api = MagicMock(spec=ComputeBlueprint)
    mock_api.list_events.side_effect = finished_events
    mock_api.get_instance.return_value = raw_instance()
    mock_api.get_ip_addresses.return_value = copy.deepcopy(RAW_ADDRESSES)
    mock_api.list_disks.return_value = raw_disks()
    mock_api.list_configs.return_value = raw_configs()
    return mock_api


@pytest.fixture
def settings():
    return ReconcileSettings(create_timeout=5, update_timeout=5, delete_timeout=5, poll_interval=0)
