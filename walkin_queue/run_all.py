from __future__ import annotations

# Single-command demo runner.
#
# Starts a full local system by spawning child processes:
# - the queue service
# - one simulated counter per department
# - the walk-in generator (Poisson arrivals)
#
# With `--watch` the parent process follows the event stream and prints it,
# like a display board would.

import argparse
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass

from .config import Settings


@dataclass
class Child:
    name: str
    proc: subprocess.Popen


def run_all(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    departments: list[str],
    arrival_rate: float,
    seed: int | None,
    mean_service_seconds: float,
    show_events: bool,
) -> None:
    if not departments:
        raise ValueError("at least one department required")
    if arrival_rate <= 0:
        raise ValueError("arrival_rate must be > 0")

    python = sys.executable
    mqtt_args = ["--mqtt-host", mqtt_host, "--mqtt-port", str(mqtt_port), "--namespace", namespace]

    # Each child gets its own process group so Ctrl+C can stop everything.
    def popen(name: str, module: str, args: list[str]) -> Child:
        proc = subprocess.Popen([python, "-m", module, *mqtt_args, *args], preexec_fn=os.setsid)
        return Child(name=name, proc=proc)

    children: list[Child] = [popen("service", "walkin_queue.service", [])]

    # Small delay so the service subscribes before requests start flowing.
    time.sleep(0.5)

    for dept in departments:
        args = ["--department", dept, "--mean-service-seconds", str(mean_service_seconds)]
        children.append(popen(f"counter-{dept}", "walkin_queue.counter", args))

    gen_args = ["--rate", str(arrival_rate), "--departments", ",".join(departments)]
    if seed is not None:
        gen_args += ["--seed", str(seed)]
    children.append(popen("generator", "walkin_queue.generator", gen_args))

    print(
        "[run] started: "
        + ", ".join(f"{c.name}(pid={c.proc.pid})" for c in children)
        + "\nPress Ctrl+C to stop all."
    )

    if show_events:
        try:
            from .client import watch

            watch(mqtt_host=mqtt_host, mqtt_port=mqtt_port, namespace=namespace)
        finally:
            _terminate_children(children)
        return

    try:
        # Wait until any child exits unexpectedly.
        while True:
            for c in children:
                rc = c.proc.poll()
                if rc is not None:
                    raise RuntimeError(f"Child {c.name} exited with code {rc}")
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        _terminate_children(children)


def _signal_children(children: list[Child], sig: int) -> None:
    for c in children:
        if c.proc.poll() is None:
            try:
                os.killpg(os.getpgid(c.proc.pid), sig)
            except ProcessLookupError:
                continue


def _terminate_children(children: list[Child]) -> None:
    _signal_children(children, signal.SIGTERM)

    deadline = time.time() + 2.0
    while time.time() < deadline:
        if all(c.proc.poll() is not None for c in children):
            return
        time.sleep(0.1)

    _signal_children(children, signal.SIGKILL)


def main() -> None:
    settings = Settings.from_env()
    parser = argparse.ArgumentParser(description="Run queue service + counters + generator")
    parser.add_argument("--mqtt-host", default=settings.mqtt_host)
    parser.add_argument("--mqtt-port", type=int, default=settings.mqtt_port)
    parser.add_argument("--namespace", default=f"walkin/run/{int(time.time())}")
    parser.add_argument("--departments", required=True, help="comma-separated department names")
    parser.add_argument("--arrival-rate", type=float, required=True, help="λ arrivals/second")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--mean-service-seconds", type=float, default=3.0)
    parser.add_argument("--watch", action="store_true", help="print the event stream")
    args = parser.parse_args()

    run_all(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        departments=[d.strip() for d in args.departments.split(",") if d.strip()],
        arrival_rate=args.arrival_rate,
        seed=args.seed,
        mean_service_seconds=args.mean_service_seconds,
        show_events=args.watch,
    )


if __name__ == "__main__":
    main()
