"""Volume detach-before-attach.

A volume may sit in at most one config's device slot. Before a config
call that attaches a volume, the volume is detached from whichever other
instance holds it and the detach is awaited synchronously.
"""

from __future__ import annotations

from nodeform.base.compute import ComputeBlueprint
from nodeform.base.logger import nf_logger
from nodeform.instance import poller
from nodeform.instance.models import DeviceMap


def detach_config_volumes(
    api: ComputeBlueprint,
    devices: DeviceMap,
    instance_id: int,
    *,
    timeout: float,
    interval: float = poller.DEFAULT_INTERVAL,
) -> list[int]:
    """Detach every volume in ``devices`` held by another instance.

    Returns:
        Ids of the volumes that were detached.
    """
    detached = []
    for volume_id in devices.volume_ids():
        volume = api.get_volume(volume_id)
        holder = volume.get("linode_id")
        if holder is None or holder == instance_id:
            continue
        nf_logger.info(
            f"Detaching volume {volume_id} from instance {holder}",
            entity_id=instance_id,
            operation="detach_volume",
        )
        api.detach_volume(volume_id)
        poller.wait_for_volume_detached(api, volume_id, timeout, interval=interval)
        detached.append(volume_id)
    return detached
