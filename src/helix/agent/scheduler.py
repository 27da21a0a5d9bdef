"""Sweep scheduler for the agent core.

Long-running process that runs the periodic agent sweeps: conversation
consolidation, memory reflection, memory refinement and self-initiated
conversations. Each sweep item is handed to the background worker, so a
slow or failing item never blocks the schedule.

Architecture:
    - Simple asyncio loop that waits on a shutdown event between runs
    - Graceful shutdown on SIGTERM/SIGINT
    - Configurable via environment variables
    - Persistence and delivery adapters supplied by a factory named in
      HELIX_AGENT_ADAPTERS ("package.module:function")

Environment Variables:
    CONSOLIDATION_SWEEP_MINUTES: Minutes between consolidation sweeps (default: 60)
    REFLECTION_SWEEP_MINUTES: Minutes between reflection sweeps (default: 1440)
    REFINEMENT_SWEEP_MINUTES: Minutes between refinement sweeps (default: 1440)
    INITIATION_SWEEP_MINUTES: Minutes between initiation sweeps (default: 60)
    SWEEPS_ON_STARTUP: Run every sweep immediately on startup (default: false)
    WORKER_MAX_CONCURRENT: Background worker concurrency (default: 5)
    WORKER_MAX_QUEUE_SIZE: Background worker queue bound (default: 1000)
    HELIX_AGENT_ADAPTERS: Import path of the adapter factory

Example:
    HELIX_AGENT_ADAPTERS=myapp.agent_adapters:build helix-agent-scheduler
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import os
import signal
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from dotenv import load_dotenv

from .background_worker import BackgroundWorker
from .config import AgentSettings
from .domain.entities import utcnow
from .domain.ports import (
    IAgentStore,
    IAuditLog,
    IBroadcaster,
    IChatStore,
    IContextBuilder,
    IMemoryStore,
    IModelRegistry,
    INotifier,
)
from .initiation import InitiationEngine
from .memory import Consolidator, Refiner, Reflector
from .orchestrator import MultiAgentSequencer, ResponseOrchestrator
from .providers import ModelRegistry, ProviderSelector
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

SweepFunc = Callable[[], Awaitable[Any]]


# ============================================
# Configuration
# ============================================


class SchedulerConfig:
    """Configuration loaded from environment variables."""

    def __init__(self):
        self.consolidation_minutes = int(os.getenv("CONSOLIDATION_SWEEP_MINUTES", "60"))
        self.reflection_minutes = int(os.getenv("REFLECTION_SWEEP_MINUTES", "1440"))
        self.refinement_minutes = int(os.getenv("REFINEMENT_SWEEP_MINUTES", "1440"))
        self.initiation_minutes = int(os.getenv("INITIATION_SWEEP_MINUTES", "60"))
        self.run_on_startup = os.getenv("SWEEPS_ON_STARTUP", "false").lower() == "true"
        self.worker_max_concurrent = int(os.getenv("WORKER_MAX_CONCURRENT", "5"))
        self.worker_max_queue_size = int(os.getenv("WORKER_MAX_QUEUE_SIZE", "1000"))
        self.adapters = os.getenv("HELIX_AGENT_ADAPTERS", "")

    def __repr__(self):
        return (
            f"SchedulerConfig("
            f"consolidation={self.consolidation_minutes}m, "
            f"reflection={self.reflection_minutes}m, "
            f"refinement={self.refinement_minutes}m, "
            f"initiation={self.initiation_minutes}m, "
            f"startup={self.run_on_startup}, "
            f"workers={self.worker_max_concurrent})"
        )


# ============================================
# Scheduling
# ============================================


@dataclass
class Sweep:
    """A named periodic job.

    Attributes:
        name: Name used in logs
        interval: Seconds between runs
        func: Coroutine function run on each tick
        next_run: When the sweep is next due
        runs: Completed runs
        failures: Runs that raised
    """

    name: str
    interval: float
    func: SweepFunc
    next_run: Optional[datetime] = None
    runs: int = 0
    failures: int = 0
    last_result: Any = field(default=None, repr=False)


class SweepScheduler:
    """Runs named sweeps on fixed intervals until shutdown.

    Usage:
        scheduler = SweepScheduler([
            Sweep("consolidation", 3600, consolidator.sweep),
            Sweep("initiation", 3600, engine.sweep),
        ])
        await scheduler.run(shutdown_event)
    """

    def __init__(
        self,
        sweeps: list[Sweep],
        run_on_startup: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sweeps = sweeps
        self.run_on_startup = run_on_startup
        self.clock = clock

    async def run_sweep(self, sweep: Sweep) -> bool:
        """Run one sweep, isolating its failure from the schedule."""
        started = self.clock()
        logger.info(f"[Scheduler] Running {sweep.name} sweep")
        try:
            sweep.last_result = await sweep.func()
            sweep.runs += 1
            duration = (self.clock() - started).total_seconds()
            logger.info(
                f"[Scheduler] {sweep.name} sweep complete: "
                f"result={sweep.last_result}, duration={duration:.1f}s"
            )
            return True
        except Exception as e:
            sweep.runs += 1
            sweep.failures += 1
            logger.exception(f"[Scheduler] {sweep.name} sweep failed: {type(e).__name__}: {e}")
            return False
        finally:
            sweep.next_run = started + timedelta(seconds=sweep.interval)

    def due(self, now: datetime) -> list[Sweep]:
        return [s for s in self.sweeps if s.next_run is None or s.next_run <= now]

    def seconds_until_next(self, now: datetime) -> float:
        upcoming = [s.next_run for s in self.sweeps if s.next_run is not None]
        if not upcoming or len(upcoming) < len(self.sweeps):
            return 0.0
        return max(0.0, (min(upcoming) - now).total_seconds())

    async def tick(self) -> int:
        """Run every sweep that is due now."""
        ran = 0
        for sweep in self.due(self.clock()):
            await self.run_sweep(sweep)
            ran += 1
        return ran

    async def run(self, shutdown_event: asyncio.Event) -> None:
        now = self.clock()
        for sweep in self.sweeps:
            if sweep.next_run is None and not self.run_on_startup:
                sweep.next_run = now + timedelta(seconds=sweep.interval)

        for sweep in self.sweeps:
            logger.info(f"[Scheduler] {sweep.name}: every {sweep.interval / 60:.0f} minutes")

        while not shutdown_event.is_set():
            await self.tick()

            timeout = self.seconds_until_next(self.clock())
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=timeout)
                break
            except asyncio.TimeoutError:
                pass

        logger.info("[Scheduler] Shutdown requested, exiting loop")


# ============================================
# Wiring
# ============================================


@dataclass
class AgentAdapters:
    """Infrastructure the agent core runs against."""

    chat_store: IChatStore
    agent_store: IAgentStore
    memory_store: IMemoryStore
    audit_log: IAuditLog
    broadcaster: IBroadcaster
    context_builder: IContextBuilder
    notifier: Optional[INotifier] = None
    registry: Optional[IModelRegistry] = None
    tool_registry: Optional[ToolRegistry] = None


@dataclass
class AgentCore:
    """Wired-up agent core components."""

    settings: AgentSettings
    worker: BackgroundWorker
    selector: ProviderSelector
    orchestrator: ResponseOrchestrator
    sequencer: MultiAgentSequencer
    consolidator: Consolidator
    reflector: Reflector
    refiner: Refiner
    initiation: InitiationEngine


def build_core(
    settings: AgentSettings, adapters: AgentAdapters, worker: BackgroundWorker
) -> AgentCore:
    registry = adapters.registry or ModelRegistry(
        base_url=settings.openrouter_base_url,
        api_key=settings.openrouter_api_key,
    )
    selector = ProviderSelector(settings, registry)
    orchestrator = ResponseOrchestrator(
        chat_store=adapters.chat_store,
        agent_store=adapters.agent_store,
        context_builder=adapters.context_builder,
        selector=selector,
        broadcaster=adapters.broadcaster,
        task_queue=worker,
        registry=registry,
        settings=settings,
        tool_registry=adapters.tool_registry,
    )
    sequencer = MultiAgentSequencer(orchestrator, worker)

    return AgentCore(
        settings=settings,
        worker=worker,
        selector=selector,
        orchestrator=orchestrator,
        sequencer=sequencer,
        consolidator=Consolidator(
            adapters.chat_store,
            adapters.agent_store,
            adapters.memory_store,
            selector,
            settings,
            task_queue=worker,
        ),
        reflector=Reflector(adapters.agent_store, adapters.memory_store, selector, settings),
        refiner=Refiner(
            adapters.agent_store,
            adapters.memory_store,
            adapters.audit_log,
            selector,
            settings,
        ),
        initiation=InitiationEngine(
            adapters.chat_store,
            adapters.agent_store,
            adapters.memory_store,
            adapters.audit_log,
            selector,
            settings,
            task_queue=worker,
            orchestrator=orchestrator,
            sequencer=sequencer,
            notifier=adapters.notifier,
        ),
    )


def build_sweeps(config: SchedulerConfig, core: AgentCore) -> list[Sweep]:
    return [
        Sweep("consolidation", config.consolidation_minutes * 60, core.consolidator.sweep),
        Sweep("reflection", config.reflection_minutes * 60, core.reflector.sweep),
        Sweep("refinement", config.refinement_minutes * 60, core.refiner.sweep),
        Sweep("initiation", config.initiation_minutes * 60, core.initiation.sweep),
    ]


def load_adapter_factory(path: str) -> Callable[[AgentSettings], AgentAdapters]:
    """Import ``package.module:function``."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"HELIX_AGENT_ADAPTERS must look like 'module:function', got {path!r}")
    return getattr(importlib.import_module(module_name), attr)


# ============================================
# Main Entry Point
# ============================================


async def run_scheduler() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    config = SchedulerConfig()
    settings = AgentSettings.from_env()
    logger.info(f"[Scheduler] Config: {config}")
    logger.info(f"[Scheduler] Settings: {settings}")

    if not config.adapters:
        logger.error("[Scheduler] HELIX_AGENT_ADAPTERS is not set")
        sys.exit(1)

    adapters = load_adapter_factory(config.adapters)(settings)

    worker = BackgroundWorker(
        max_queue_size=config.worker_max_queue_size,
        max_concurrent=config.worker_max_concurrent,
    )
    await worker.start()

    core = build_core(settings, adapters, worker)
    scheduler = SweepScheduler(build_sweeps(config, core), run_on_startup=config.run_on_startup)

    shutdown_event = asyncio.Event()

    def handle_shutdown(signum, frame):
        logger.info(f"[Scheduler] Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    try:
        await scheduler.run(shutdown_event)
    finally:
        await worker.stop(timeout=30)
        logger.info("[Scheduler] Stopped")


def main() -> None:
    load_dotenv()
    asyncio.run(run_scheduler())


if __name__ == "__main__":
    main()
