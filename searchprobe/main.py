"""
Entrypoint helpers for running the probe scheduler.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

from searchprobe.core.config import get_settings
from searchprobe.core.logging import configure_logging
from searchprobe.dependencies import build_scheduler
from searchprobe.schemas.config import load_probe_config
from searchprobe.services import ProbeScheduler, SchedulerPhase


def create_scheduler(config_path: Optional[Path] = None) -> ProbeScheduler:
    """Factory for a scheduler configured from the saved probe document."""
    settings = get_settings()
    configure_logging(settings.log_level)
    document = load_probe_config(config_path or settings.storage.config_path)
    return build_scheduler(document)


async def run_until_idle(scheduler: ProbeScheduler, *, poll_seconds: float = 1.0) -> None:
    """Resolve the target if one is set, start probing and wait for the scheduler to settle."""
    if scheduler.state.target_url and not scheduler.state.validating:
        outcome = await scheduler.resolve()
        if not outcome.resolved:
            return
    await scheduler.start()
    try:
        while scheduler.phase is SchedulerPhase.RUNNING:
            await asyncio.sleep(poll_seconds)
    finally:
        await scheduler.stop()


__all__ = ["create_scheduler", "run_until_idle"]
