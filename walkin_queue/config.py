from __future__ import annotations

# Runtime settings.
#
# Defaults can be overridden with WALKIN_* environment variables; the CLI
# flags of each command default to these values and override them again.

import os
from dataclasses import dataclass, fields
from typing import Mapping

from .service_time import DEFAULT_SERVICE_MINUTES

DEFAULT_NAMESPACE = "walkin/v1"


@dataclass(frozen=True)
class Settings:
    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = 1883
    namespace: str = DEFAULT_NAMESPACE
    avg_service_minutes: float = DEFAULT_SERVICE_MINUTES
    service_time_window: int = 0
    publish_status_every: float = 5.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(f"WALKIN_{f.name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            caster = type(getattr(cls, f.name))
            try:
                values[f.name] = caster(raw.strip())
            except ValueError as e:
                raise ValueError(f"invalid value for WALKIN_{f.name.upper()}: {raw!r}") from e
        return cls(**values)
