from __future__ import annotations

import argparse
import json
import os
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _ok(body) -> bool:
    return isinstance(body, dict) and body.get("status") == "success"


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="nodekeeper CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    p.add_argument("--user", default=os.getenv("NK_CLI_USER"), help="HTTP Basic user")
    p.add_argument("--password", default=os.getenv("NK_CLI_PASSWORD"), help="HTTP Basic password")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("apps", help="List installed workloads")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--level")

    s_reg = sub.add_parser("register", help="Register/update a workload spec")
    s_reg.add_argument("--name", required=True)
    s_reg.add_argument("--version", type=int, required=True)
    s_reg.add_argument("--component", action="append", default=[], help="Component name (repeat, in order)")
    s_reg.add_argument("--owner")

    s_start = sub.add_parser("start-monitoring", help="Start monitoring all workloads or one workload/component")
    s_start.add_argument("appname", nargs="?")

    s_stop = sub.add_parser("stop-monitoring", help="Stop monitoring all workloads or one workload/component")
    s_stop.add_argument("appname", nargs="?")
    s_stop.add_argument("--delete-data", action="store_true")

    s_mon = sub.add_parser("monitor", help="Show stored samples for a container identity")
    s_mon.add_argument("appname")
    s_mon.add_argument("--range", type=int, help="Only samples from the last N milliseconds")

    s_rec = sub.add_parser("recover", help="Run a recovery pass")
    s_rec.add_argument("--mounts-only", action="store_true", help="Only the mount-drift pass")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")
    auth = (args.user, args.password) if args.user else None

    if args.cmd == "apps":
        body = requests.get(f"{base}/apps", auth=auth, timeout=10).json()
        _print(body)
        return 0 if _ok(body) else 1

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.level:
            params["level"] = args.level
        body = requests.get(f"{base}/events", params=params, auth=auth, timeout=10).json()
        _print(body)
        return 0 if _ok(body) else 1

    if args.cmd == "register":
        payload = {
            "name": args.name,
            "version": args.version,
            "components": args.component,
            "owner": args.owner,
        }
        r = requests.post(f"{base}/apps/register", json=payload, auth=auth, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "start-monitoring":
        url = f"{base}/apps/startmonitoring" + (f"/{args.appname}" if args.appname else "")
        body = requests.get(url, auth=auth, timeout=30).json()
        _print(body)
        return 0 if _ok(body) else 1

    if args.cmd == "stop-monitoring":
        url = f"{base}/apps/stopmonitoring" + (f"/{args.appname}" if args.appname else "")
        params = {"deletedata": "true" if args.delete_data else "false"}
        body = requests.get(url, params=params, auth=auth, timeout=30).json()
        _print(body)
        return 0 if _ok(body) else 1

    if args.cmd == "monitor":
        params = {"range": args.range} if args.range else None
        body = requests.get(f"{base}/apps/monitor/{args.appname}", params=params, auth=auth, timeout=30).json()
        _print(body)
        return 0 if _ok(body) else 1

    if args.cmd == "recover":
        path = "/recovery/mounts" if args.mounts_only else "/recovery/run"
        # Restarts are spaced out, so a full pass can take a while.
        r = requests.post(f"{base}{path}", auth=auth, timeout=600)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
