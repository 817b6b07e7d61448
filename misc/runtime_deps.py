from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable


@dataclass(frozen=True)
class RuntimeDeps:
    # sessions / dispatch
    registry: Any
    scheduler: Any
    platform: Any
    diagnostics: Any

    # live monitors
    monitor_factory: Callable

    # config
    attachments_dir: Path
    reload_config: Callable[[], Awaitable[None]]
