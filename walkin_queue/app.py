from __future__ import annotations

# Single-entrypoint CLI.
#
#   python -m walkin_queue.app serve                      # the queue service
#   python -m walkin_queue.app run --departments a,b --arrival-rate 0.5
#   python -m walkin_queue.app admit --name ... --department ...
#   python -m walkin_queue.app call-next --department ... --role staff
#   python -m walkin_queue.app watch [--department ...]
#
# Long-running processes are delegated to their module's `main()`; one-shot
# requests go through `QueueClient` and print the JSON reply.

import argparse
import json
import sys
from typing import Any

from .config import Settings


def main(argv: list[str] | None = None) -> int:
    settings = Settings.from_env()
    parser = argparse.ArgumentParser(description="Walk-in Queue System (MQTT) - main entrypoint")
    sub = parser.add_subparsers(dest="cmd", required=True)

    def add_mqtt_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--mqtt-host", default=settings.mqtt_host)
        p.add_argument("--mqtt-port", type=int, default=settings.mqtt_port)
        p.add_argument("--namespace", default=settings.namespace)

    def add_role(p: argparse.ArgumentParser) -> None:
        p.add_argument("--role", default="staff", help="caller role (staff, admin or doctor)")

    # ---- long-running processes ----
    p_serve = sub.add_parser("serve", help="Start the queue service")
    add_mqtt_args(p_serve)
    p_serve.add_argument("--avg-service-minutes", type=float, default=settings.avg_service_minutes)
    p_serve.add_argument("--service-time-window", type=int, default=settings.service_time_window)
    p_serve.add_argument("--publish-status-every", type=float, default=settings.publish_status_every)
    p_serve.add_argument("--log-level", default=settings.log_level)

    p_run = sub.add_parser("run", help="Start service + counters + generator (demo)")
    add_mqtt_args(p_run)
    p_run.add_argument("--departments", required=True, help="comma-separated department names")
    p_run.add_argument("--arrival-rate", type=float, required=True, help="λ arrivals/second")
    p_run.add_argument("--seed", type=int, default=None)
    p_run.add_argument("--mean-service-seconds", type=float, default=3.0)
    p_run.add_argument("--watch", action="store_true", help="print the event stream")

    p_watch = sub.add_parser("watch", help="Follow queue events like a display board")
    add_mqtt_args(p_watch)
    p_watch.add_argument("--department", default=None, help="only this department")

    # ---- one-shot requests ----
    p_admit = sub.add_parser("admit", help="Register a walk-in and print its ticket")
    add_mqtt_args(p_admit)
    p_admit.add_argument("--name", required=True)
    p_admit.add_argument("--phone", required=True)
    p_admit.add_argument("--age", type=int, required=True)
    p_admit.add_argument("--gender", required=True, choices=["male", "female", "other"])
    p_admit.add_argument("--department", required=True)
    p_admit.add_argument("--urgency", default="low", choices=["emergency", "high", "medium", "low"])
    p_admit.add_argument("--email", default=None)
    p_admit.add_argument("--symptoms", default=None)
    p_admit.add_argument("--visit-type", default="walk-in", choices=["walk-in", "appointment"])

    p_lookup = sub.add_parser("lookup", help="Show the status of a ticket")
    add_mqtt_args(p_lookup)
    p_lookup.add_argument("--token", required=True)

    p_cancel = sub.add_parser("cancel", help="Leave the line before being called")
    add_mqtt_args(p_cancel)
    p_cancel.add_argument("--token", required=True)

    p_status = sub.add_parser("status", help="Live status of every department")
    add_mqtt_args(p_status)

    p_next = sub.add_parser("call-next", help="(staff) Dispatch the next entity")
    add_mqtt_args(p_next)
    add_role(p_next)
    p_next.add_argument("--department", required=True)

    for cmd, help_text in (("complete", "(staff) Finish a service"), ("skip", "(staff) Skip a waiting entity")):
        p = sub.add_parser(cmd, help=help_text)
        add_mqtt_args(p)
        add_role(p)
        p.add_argument("--entity-id", required=True)

    p_state = sub.add_parser("set-state", help="(staff) Pause, close or reopen a department")
    add_mqtt_args(p_state)
    add_role(p_state)
    p_state.add_argument("--department", required=True)
    p_state.add_argument("--state", required=True, choices=["active", "paused", "closed"])

    args = parser.parse_args(argv)
    mqtt_argv = ["--mqtt-host", args.mqtt_host, "--mqtt-port", str(args.mqtt_port), "--namespace", args.namespace]

    if args.cmd == "serve":
        from .service import main as run

        _dispatch_to_module_main(
            run,
            mqtt_argv
            + [
                "--avg-service-minutes",
                str(args.avg_service_minutes),
                "--service-time-window",
                str(args.service_time_window),
                "--publish-status-every",
                str(args.publish_status_every),
                "--log-level",
                args.log_level,
            ],
        )
        return 0

    if args.cmd == "run":
        from .run_all import main as run

        run_argv = mqtt_argv + [
            "--departments",
            args.departments,
            "--arrival-rate",
            str(args.arrival_rate),
            "--mean-service-seconds",
            str(args.mean_service_seconds),
        ]
        if args.seed is not None:
            run_argv += ["--seed", str(args.seed)]
        if args.watch:
            run_argv += ["--watch"]
        _dispatch_to_module_main(run, run_argv)
        return 0

    if args.cmd == "watch":
        from .client import watch

        watch(mqtt_host=args.mqtt_host, mqtt_port=args.mqtt_port, namespace=args.namespace, department=args.department)
        return 0

    return _run_request(args)


def _run_request(args: argparse.Namespace) -> int:
    from .client import QueueClient

    client = QueueClient(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        role=getattr(args, "role", None),
    )
    with client:
        if args.cmd == "admit":
            fields = {
                "name": args.name,
                "phone": args.phone,
                "age": args.age,
                "gender": args.gender,
                "department": args.department,
                "urgency": args.urgency,
                "email": args.email,
                "symptoms": args.symptoms,
                "visit_type": args.visit_type,
            }
            resp = client.admit(fields)
        elif args.cmd == "lookup":
            resp = client.lookup(args.token)
        elif args.cmd == "cancel":
            resp = client.cancel(args.token)
        elif args.cmd == "status":
            resp = client.live_status()
        elif args.cmd == "call-next":
            resp = client.call_next(args.department)
        elif args.cmd == "complete":
            resp = client.complete(args.entity_id)
        elif args.cmd == "skip":
            resp = client.skip(args.entity_id)
        elif args.cmd == "set-state":
            resp = client.set_state(args.department, args.state)
        else:
            raise SystemExit(f"unknown command {args.cmd}")

    _print(resp)
    return 1 if resp.get("type") == "error" else 0


def _print(resp: dict[str, Any]) -> None:
    resp = {k: v for k, v in resp.items() if k != "corr_id"}
    print(json.dumps(resp, indent=2, sort_keys=True))


def _dispatch_to_module_main(module_main, argv: list[str]) -> None:
    old_argv = sys.argv[:]
    try:
        sys.argv = [old_argv[0], *argv]
        module_main()
    finally:
        sys.argv = old_argv


if __name__ == "__main__":
    sys.exit(main())
