"""
Health endpoints of the deposit worker.

/health reports scanner progress and coordinator backlog, /readiness
tells an orchestrator whether deposits are being picked up.
"""

import asyncio
from typing import Any

from aiohttp import web
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from custody.config.constants import HEALTH_MAX_SCAN_LAG_BLOCKS
from custody.services.deposit_coordinator import DepositCoordinator

# Registered by the worker on startup
_scheduler: AsyncIOScheduler | None = None
_coordinator: DepositCoordinator | None = None


def set_scheduler(scheduler: AsyncIOScheduler | None) -> None:
    """Register the reconciliation scheduler."""
    global _scheduler
    _scheduler = scheduler


def set_coordinator(coordinator: DepositCoordinator | None) -> None:
    """Register the deposit coordinator."""
    global _coordinator
    _coordinator = coordinator


def worker_status(max_lag: int = HEALTH_MAX_SCAN_LAG_BLOCKS) -> tuple[str, list[str]]:
    """
    Summarize the worker state.

    Returns:
        ("healthy" | "degraded" | "unhealthy", problems found)
    """
    if _scheduler is None:
        return "unhealthy", ["scheduler not initialized"]

    problems = []
    if not _scheduler.running:
        problems.append("scheduler stopped")
    if _coordinator is None:
        problems.append("coordinator not registered")
    else:
        state = _coordinator.snapshot()
        if not state["running"]:
            problems.append("coordinator stopped")
        lag = state.get("lag")
        if lag is not None and lag > max_lag:
            problems.append(f"scanner {lag} blocks behind")
        if state.get("ticks_dropped"):
            problems.append(f"{state['ticks_dropped']} ticks dropped")

    return ("degraded" if problems else "healthy"), problems


async def health_handler(request: web.Request) -> web.Response:
    """Scanner and coordinator state; 503 unless healthy."""
    try:
        status, problems = worker_status()
    except Exception as e:
        logger.error(f"[Health] Status check failed: {e}")
        return web.json_response({"status": "unhealthy", "problems": [str(e)]}, status=503)

    body: dict[str, Any] = {"status": status, "problems": problems}
    if _scheduler is not None:
        body["reconciliation_jobs"] = {
            job.id: job.next_run_time.isoformat() if job.next_run_time else None
            for job in _scheduler.get_jobs()
        }
    if _coordinator is not None:
        body["coordinator"] = _coordinator.snapshot()
    return web.json_response(body, status=200 if status == "healthy" else 503)


async def readiness_handler(request: web.Request) -> web.Response:
    """Ready while the coordinator consumes scan ticks."""
    ready = bool(
        _scheduler is not None
        and _scheduler.running
        and _coordinator is not None
        and _coordinator.is_running
    )
    return web.json_response({"ready": ready}, status=200 if ready else 503)


async def liveness_handler(request: web.Request) -> web.Response:
    return web.json_response({"alive": True})


def create_health_app() -> web.Application:
    app = web.Application()
    app.add_routes(
        [
            web.get("/health", health_handler),
            web.get("/readiness", readiness_handler),
            web.get("/liveness", liveness_handler),
        ]
    )
    return app


async def start_health_server(
    host: str = "0.0.0.0",
    port: int = 8081,
) -> tuple[web.AppRunner, web.TCPSite]:
    """
    Serve the health endpoints.

    Returns:
        (runner, site); pass the runner to stop_health_server()
    """
    runner = web.AppRunner(create_health_app())
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"[Health] Listening on {host}:{port}")
    return runner, site


async def stop_health_server(runner: web.AppRunner, timeout: int = 5) -> None:
    try:
        await asyncio.wait_for(runner.cleanup(), timeout=timeout)
    except TimeoutError:
        logger.warning(f"[Health] Cleanup timed out after {timeout}s")
    else:
        logger.info("[Health] Stopped")
