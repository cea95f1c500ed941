from __future__ import annotations

# Simulated service counter (staff console).
#
# One process per department:
# - ask the queue service for the next entity
# - "serve" it by sleeping for an exponentially distributed time
# - report completion, then start over
#
# An empty or paused department is polled again after a short pause.

import argparse
import random
import time

from .client import QueueClient
from .config import Settings


def run_counter(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    department: str,
    mean_service_seconds: float,
    idle_seconds: float = 1.0,
    seed: int | None = None,
) -> None:
    if mean_service_seconds <= 0:
        raise ValueError("mean_service_seconds must be > 0")
    rng = random.Random(seed)

    client = QueueClient(
        mqtt_host=mqtt_host,
        mqtt_port=mqtt_port,
        namespace=namespace,
        client_id=f"counter-{department}-{int(time.time())}",
        role="staff",
    )
    client.start()
    print(f"[counter {department}] ready, mean service={mean_service_seconds}s")

    served = 0
    try:
        while True:
            resp = client.call_next(department)
            if resp.get("type") != "called":
                if resp.get("code") not in ("empty_queue", "not_active"):
                    print(f"[counter {department}] call_next error: {resp}")
                time.sleep(idle_seconds)
                continue

            entity = resp["entity"]
            st = rng.expovariate(1.0 / mean_service_seconds)
            print(f"[counter {department}] serving {entity['token']} ({entity['urgency']}, {st:0.2f}s)")
            time.sleep(st)

            done = client.complete(entity["id"])
            if done.get("type") == "completed":
                served += 1
                print(f"[counter {department}] done {entity['token']} (served={served})")
            else:
                print(f"[counter {department}] complete error: {done}")
    except KeyboardInterrupt:
        pass
    finally:
        client.stop()


def main() -> None:
    settings = Settings.from_env()
    parser = argparse.ArgumentParser(description="Simulated service counter (MQTT)")
    parser.add_argument("--department", required=True)
    parser.add_argument("--mqtt-host", default=settings.mqtt_host)
    parser.add_argument("--mqtt-port", type=int, default=settings.mqtt_port)
    parser.add_argument("--namespace", default=settings.namespace)
    parser.add_argument("--mean-service-seconds", type=float, default=3.0)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()

    run_counter(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        department=args.department,
        mean_service_seconds=args.mean_service_seconds,
        seed=args.seed,
    )


if __name__ == "__main__":
    main()
