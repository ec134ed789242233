"""Control CLI for the shared Chrome daemon."""

from __future__ import annotations

import argparse
import json
import sys
from collections import deque

from .config import DaemonConfig, daemon_log_path
from .daemon_manager import DaemonStartTimeout, daemon_status, ensure_daemon_running, stop_daemon


def _cmd_start(args: argparse.Namespace) -> int:
    try:
        endpoint = ensure_daemon_running(DaemonConfig.from_env())
    except DaemonStartTimeout as exc:
        print(str(exc), file=sys.stderr)
        print(f"See {daemon_log_path()}", file=sys.stderr)
        return 1
    print(f"Chrome daemon running at {endpoint}")
    return 0


def _cmd_stop(args: argparse.Namespace) -> int:
    if stop_daemon(timeout=args.timeout):
        print("Chrome daemon stopped")
    else:
        print("Chrome daemon not running")
    return 0


def _cmd_restart(args: argparse.Namespace) -> int:
    stop_daemon(timeout=args.timeout)
    return _cmd_start(args)


def _cmd_status(args: argparse.Namespace) -> int:
    report = daemon_status()
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        state = f"running (pid {report.pid})" if report.running else "not running"
        print(f"Chrome daemon: {state}")
        print(f"  endpoint:  {report.endpoint} ({'reachable' if report.reachable else 'unreachable'})")
        print(f"  lock file: {report.lock_path}")
        print(f"  log file:  {report.log_path}")
    return 0 if report.running else 3


def _cmd_logs(args: argparse.Namespace) -> int:
    path = daemon_log_path()
    try:
        with open(path, encoding="utf-8", errors="replace") as fp:
            lines = deque(fp, maxlen=max(1, args.lines))
    except FileNotFoundError:
        print(f"No daemon log at {path}", file=sys.stderr)
        return 1
    sys.stdout.write("".join(lines))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shared-browser-daemonctl", description="Manage the shared Chrome daemon")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("start", help="Start the daemon if it is not running").set_defaults(func=_cmd_start)

    for name, func in (("stop", _cmd_stop), ("restart", _cmd_restart)):
        p = sub.add_parser(name, help=f"{name.capitalize()} the daemon")
        p.add_argument("--timeout", type=float, default=10.0, help="Seconds to wait for shutdown")
        p.set_defaults(func=func)

    status = sub.add_parser("status", help="Show daemon state")
    status.add_argument("--json", action="store_true", help="Machine-readable output")
    status.set_defaults(func=_cmd_status)

    logs = sub.add_parser("logs", help="Print the tail of the daemon log")
    logs.add_argument("-n", "--lines", type=int, default=50)
    logs.set_defaults(func=_cmd_logs)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
