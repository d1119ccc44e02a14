from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Application host CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("resources", help="List resources and their current snapshots")

    s_res = sub.add_parser("resource", help="Show one resource")
    s_res.add_argument("name")

    s_health = sub.add_parser("health", help="Run health checks")
    s_health.add_argument("--check", help="Only run this check, e.g. provisioner_check")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--resource", help="Only events for this resource")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "resources":
        r = requests.get(f"{base}/resources", timeout=10)
    elif args.cmd == "resource":
        r = requests.get(f"{base}/resources/{args.name}", timeout=10)
    elif args.cmd == "health":
        url = f"{base}/health/{args.check}" if args.check else f"{base}/health"
        r = requests.get(url, timeout=30)
    elif args.cmd == "events":
        params = {"limit": args.limit}
        if args.resource:
            params["resource"] = args.resource
        r = requests.get(f"{base}/events", params=params, timeout=10)
    else:
        return 2

    _print(r.json())
    return 0 if r.ok else 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
