from __future__ import annotations

# Walk-in generator.
#
# Simulates a registration desk: entities arrive as a Poisson process and are
# admitted through the exact same MQTT request/response protocol as a real
# desk would use.

import argparse
import random
import time

from .arrival import sample_exponential_interarrival, sample_urgency
from .client import QueueClient
from .config import Settings

GENDERS = ("male", "female", "other")


def sample_fields(*, index: int, departments: list[str], rng: random.Random) -> dict:
    """Admission fields for the `index`-th simulated arrival."""
    return {
        "name": f"Walkin{index}",
        "phone": f"555{rng.randrange(10**7):07d}",
        "age": rng.randint(1, 90),
        "gender": rng.choice(GENDERS),
        "department": rng.choice(departments),
        "urgency": sample_urgency(rng=rng).value,
    }


def run_generator(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    rate_per_sec: float,
    departments: list[str],
    max_arrivals: int | None = None,
    seed: int | None = None,
) -> None:
    """Admit walk-ins indefinitely (or for max_arrivals).

    Args:
        rate_per_sec: λ, arrivals per second.
        departments: departments to spread arrivals over (uniformly).
        max_arrivals: if provided, stop after admitting this many.
        seed: if provided, makes arrivals deterministic.
    """
    if not departments:
        raise ValueError("at least one department required")
    rng = random.Random(seed)

    client = QueueClient(
        mqtt_host=mqtt_host,
        mqtt_port=mqtt_port,
        namespace=namespace,
        client_id=f"generator-{int(time.time())}",
    )
    client.start()

    print(
        f"[generator] connected to MQTT {mqtt_host}:{mqtt_port}, namespace={namespace}, "
        f"rate={rate_per_sec} arrivals/s, departments={','.join(departments)}"
    )

    i = 0
    try:
        while True:
            if max_arrivals is not None and i >= max_arrivals:
                print(f"[generator] reached max_arrivals={max_arrivals}, stopping")
                return

            dt = sample_exponential_interarrival(rate_per_sec=rate_per_sec, rng=rng)
            time.sleep(dt)

            i += 1
            fields = sample_fields(index=i, departments=departments, rng=rng)
            resp = client.admit(fields)

            if resp.get("type") == "admitted":
                entity = resp["entity"]
                print(
                    f"[generator] {fields['name']} ({fields['urgency']}) -> {entity['token']} "
                    f"pos {entity.get('position')} (dt={dt:0.2f}s)"
                )
            else:
                print(f"[generator] {fields['name']} -> error {resp} (dt={dt:0.2f}s)")

    except KeyboardInterrupt:
        pass
    finally:
        client.stop()


def main() -> None:
    settings = Settings.from_env()
    parser = argparse.ArgumentParser(description="Walk-in generator (Poisson arrivals over MQTT)")
    parser.add_argument("--mqtt-host", default=settings.mqtt_host)
    parser.add_argument("--mqtt-port", type=int, default=settings.mqtt_port)
    parser.add_argument("--namespace", default=settings.namespace)
    parser.add_argument(
        "--rate",
        type=float,
        required=True,
        help="arrival rate λ in arrivals/second (Poisson process)",
    )
    parser.add_argument("--departments", default="general", help="comma-separated department names")
    parser.add_argument("--max-arrivals", type=int, default=None)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()

    run_generator(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        rate_per_sec=args.rate,
        departments=[d.strip() for d in args.departments.split(",") if d.strip()],
        max_arrivals=args.max_arrivals,
        seed=args.seed,
    )


if __name__ == "__main__":
    main()
