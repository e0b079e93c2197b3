#!/usr/bin/env python3
"""
Operator CLI for the tenant provisioning control plane.

Talks to the control-plane database directly (same settings as the API).

Usage:
    python scripts/provisionctl.py tenants
    python scripts/provisionctl.py create --actor alice --slug acme --display-name "Acme" --gateway-port 19001
    python scripts/provisionctl.py jobs --status queued --limit 20
    python scripts/provisionctl.py show 42
    python scripts/provisionctl.py approve 42 --actor bob --reason "reviewed"
    python scripts/provisionctl.py run 42 --actor carol
    python scripts/provisionctl.py decommission 7 --actor alice --execute --remove-linux-user
"""

import argparse
import asyncio
import json
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from core.errors import APIError


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tenant provisioning control plane")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("tenants", help="List tenants with their latest job")

    create = sub.add_parser("create", help="Create a tenant and queue its bootstrap job")
    create.add_argument("--actor", required=True)
    create.add_argument("--slug", required=True)
    create.add_argument("--display-name", required=True)
    create.add_argument("--gateway-port", type=int, required=True)
    create.add_argument("--dashboard-port", type=int)
    create.add_argument("--linux-user")
    create.add_argument("--plan-tier", default="standard")
    create.add_argument("--owner-gateway")
    create.add_argument("--execute", action="store_true",
                        help="Queue a live job (default: dry-run)")

    decom = sub.add_parser("decommission", help="Queue a decommission job")
    decom.add_argument("tenant_id", type=int)
    decom.add_argument("--actor", required=True)
    decom.add_argument("--reason")
    decom.add_argument("--remove-linux-user", action="store_true")
    decom.add_argument("--remove-state-dirs", action="store_true")
    decom.add_argument("--execute", action="store_true",
                       help="Queue a live job (default: dry-run)")

    jobs = sub.add_parser("jobs", help="List provision jobs, newest first")
    jobs.add_argument("--tenant-id", type=int)
    jobs.add_argument("--status")
    jobs.add_argument("--limit", type=int, default=100)

    show = sub.add_parser("show", help="Show a job with its events")
    show.add_argument("job_id", type=int)

    for action in ("approve", "reject", "cancel"):
        p = sub.add_parser(action, help=f"{action.capitalize()} a provision job")
        p.add_argument("job_id", type=int)
        p.add_argument("--actor", required=True)
        p.add_argument("--reason")

    run = sub.add_parser("run", help="Execute an approved provision job")
    run.add_argument("job_id", type=int)
    run.add_argument("--actor", required=True)

    return parser


def dispatch(service, args):
    """Run one CLI command against the service; returns a JSON-able payload."""
    if args.command == "tenants":
        return {"tenants": [t.to_dict() for t in service.list_tenants()]}

    if args.command == "create":
        request = {
            "slug": args.slug,
            "display_name": args.display_name,
            "gateway_port": args.gateway_port,
            "dashboard_port": args.dashboard_port,
            "plan_tier": args.plan_tier,
            "owner_gateway": args.owner_gateway,
            "dry_run": not args.execute,
        }
        if args.linux_user:
            request["linux_user"] = args.linux_user
        created = service.create_tenant_and_bootstrap_job(request, actor=args.actor)
        return {"tenant": created["tenant"].to_dict(), "job": created["job"].to_dict(include_events=True)}

    if args.command == "decommission":
        created = service.create_tenant_decommission_job(
            args.tenant_id,
            {
                "dry_run": not args.execute,
                "remove_linux_user": args.remove_linux_user,
                "remove_state_dirs": args.remove_state_dirs,
                "reason": args.reason,
            },
            actor=args.actor,
        )
        return {"tenant": created["tenant"].to_dict(), "job": created["job"].to_dict(include_events=True)}

    if args.command == "jobs":
        jobs = service.list_provision_jobs(
            tenant_id=args.tenant_id, status=args.status, limit=args.limit,
        )
        return {"jobs": [j.to_dict() for j in jobs]}

    if args.command == "show":
        return {"job": service.get_provision_job(args.job_id).to_dict(include_events=True)}

    if args.command in ("approve", "reject", "cancel"):
        job = service.transition_provision_job_status(
            args.job_id, actor=args.actor, action=args.command, reason=args.reason,
        )
        return {"job": job.to_dict(include_events=True)}

    if args.command == "run":
        job = asyncio.run(service.execute_provision_job(args.job_id, actor=args.actor))
        return {"job": job.to_dict(include_events=True)}

    raise ValueError(f"Unknown command: {args.command}")


def main(argv=None, service=None) -> int:
    args = build_parser().parse_args(argv)

    if service is None:
        from core.provisioning import get_provisioning_service
        service = get_provisioning_service()

    try:
        payload = dispatch(service, args)
    except APIError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    _print_json(payload)
    return 0


if __name__ == "__main__":
    sys.exit(main())
