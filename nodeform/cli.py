"""Nodeform CLI: reconcile a Linode instance from a desired-state file.

Usage examples::

    nodeform plan -f web.json --id 12345
    nodeform apply -f web.json
    nodeform read --id 12345
    nodeform delete --id 12345
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from nodeform.base.config import LinodeConfig, ReconcileSettings
from nodeform.base.exceptions import NodeformError
from nodeform.instance.diff import ChangeKind, InstancePlan
from nodeform.instance.normalize import connection_info, to_desired


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the ``nodeform`` CLI."""
    parser = argparse.ArgumentParser(
        prog="nodeform",
        description="Declarative Linode instance reconciliation",
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default="{}",
        help='JSON API config string (e.g. \'{"token":"...","api_url":"..."}\')',
    )
    parser.add_argument(
        "--settings", "-s",
        type=str,
        default="{}",
        help='JSON reconcile settings (e.g. \'{"update_timeout":900}\')',
    )
    parser.add_argument(
        "operation",
        choices=["plan", "apply", "read", "delete"],
        help="Operation to perform",
    )
    parser.add_argument(
        "--file", "-f",
        type=Path,
        help="Desired-state JSON file (plan/apply)",
    )
    parser.add_argument(
        "--id",
        dest="instance_id",
        help="Remote instance id (required for read/delete)",
    )
    return parser


def _load_json(raw: str, flag: str) -> dict[str, Any]:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        print(f"Invalid {flag} JSON: {e}", file=sys.stderr)
        sys.exit(1)
    if not isinstance(value, dict):
        print(f"Invalid {flag} JSON: expected an object", file=sys.stderr)
        sys.exit(1)
    return value


def _plan_summary(plan: InstancePlan | None) -> dict[str, Any]:
    if plan is None:
        return {"create": True, "changes": []}
    return {
        "create": False,
        "recreate": plan.recreate is not None,
        "reboot": plan.reboot_required,
        "boot_config_label": plan.boot_config_label,
        "unmatched_configs": plan.unmatched_configs,
        "changes": [
            {
                "kind": change.kind.value,
                "category": change.category,
                "target": change.target,
                "fields": change.fields,
            }
            for change in plan.changes()
            if change.kind is not ChangeKind.NOOP
        ],
    }


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Results are printed as JSON; any reconciliation error exits with
    status 1 and the contextual message on stderr.

    Args:
        argv: Optional argument list (defaults to ``sys.argv``).
    """
    parser = _build_parser()
    ns = parser.parse_args(argv)

    config = _load_json(ns.config, "--config")
    settings_raw = _load_json(ns.settings, "--settings")

    desired: dict[str, Any] | None = None
    if ns.operation in ("plan", "apply"):
        if ns.file is None:
            parser.error(f"{ns.operation} requires --file")
        desired = _load_json(ns.file.read_text(), str(ns.file))
    elif ns.instance_id is None:
        parser.error(f"{ns.operation} requires --id")

    # Lazy-import so --help works without the HTTP stack
    from nodeform.instance.resource import InstanceResource
    from nodeform.linode import Compute

    try:
        api = Compute(LinodeConfig(**config))
        resource = InstanceResource(api, ReconcileSettings(**settings_raw))
    except (ValidationError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if ns.operation == "plan":
            result: Any = _plan_summary(resource.plan(desired, ns.instance_id))
        elif ns.operation == "apply":
            state = resource.apply(desired, ns.instance_id)
            result = {"id": state.id, "state": to_desired(state), "connection": connection_info(state)}
        elif ns.operation == "read":
            state = resource.read(ns.instance_id)
            result = None if state is None else to_desired(state)
        else:
            resource.delete(ns.instance_id)
            result = None
    except NodeformError as e:
        print(f"Operation failed: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        api.close()

    if result is None:
        print("OK")
    else:
        print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
