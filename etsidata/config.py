from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

log = logging.getLogger(__name__)

DEFAULT_ROOT = "root.etsidata"


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("%s=%r is not an integer, using %d", name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    iotdb_host: str = "127.0.0.1"
    iotdb_port: int = 6667
    iotdb_user: str = "root"
    iotdb_password: str = "root"
    ws_host: str = "0.0.0.0"
    ws_port: int = 9898
    identifier_root: str = DEFAULT_ROOT
    timeout_ms: int = 1000
    send_queue_size: int = 64

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables; missing or bad values keep the defaults."""
        env = os.environ if env is None else env
        return cls(
            iotdb_host=env.get("IOTDB_HOST", cls.iotdb_host),
            iotdb_port=_env_int(env, "IOTDB_PORT", cls.iotdb_port),
            iotdb_user=env.get("IOTDB_USER", cls.iotdb_user),
            iotdb_password=env.get("IOTDB_PASSWORD", cls.iotdb_password),
            ws_host=env.get("WSHOST", cls.ws_host),
            ws_port=_env_int(env, "WSPORT", cls.ws_port),
            identifier_root=env.get("ETSIDATA_ROOT", cls.identifier_root),
            timeout_ms=_env_int(env, "IOTDB_TIMEOUT_MS", cls.timeout_ms),
            send_queue_size=max(1, _env_int(env, "ETSIDATA_SEND_QUEUE", cls.send_queue_size)),
        )
