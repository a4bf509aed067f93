"""
Health check server for engine processes.

Provides HTTP endpoints for the scheduler and the distribution worker pool.
"""

import asyncio

from aiohttp import web
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from app.services.referral import DistributionWorkerPool

# Components registered by the running process
_scheduler: AsyncIOScheduler | None = None
_worker_pool: DistributionWorkerPool | None = None


def set_scheduler(scheduler: AsyncIOScheduler) -> None:
    """
    Set the scheduler instance for health checks.

    Args:
        scheduler: AsyncIOScheduler instance to monitor
    """
    global _scheduler
    _scheduler = scheduler
    logger.info("Scheduler registered for health checks")


def set_worker_pool(pool: DistributionWorkerPool) -> None:
    """
    Set the worker pool instance for health checks.

    Args:
        pool: DistributionWorkerPool instance to monitor
    """
    global _worker_pool
    _worker_pool = pool
    logger.info("Worker pool registered for health checks")


def _scheduler_status() -> dict:
    jobs = _scheduler.get_jobs()
    return {
        "running": _scheduler.running,
        "jobs_count": len(jobs),
        "jobs": [
            {
                "id": job.id,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in jobs
        ],
    }


def _worker_pool_status() -> dict:
    return {
        "running": _worker_pool.is_running,
        "workers": _worker_pool.workers,
        "stats": dict(_worker_pool.stats),
    }


def _is_ready() -> bool:
    components = [c for c in (_scheduler, _worker_pool) if c is not None]
    if not components:
        return False
    scheduler_ok = _scheduler is None or _scheduler.running
    pool_ok = _worker_pool is None or _worker_pool.is_running
    return scheduler_ok and pool_ok


async def health_handler(request: web.Request) -> web.Response:
    """
    Health check endpoint.

    Returns:
        JSON response with status of every registered component
    """
    if _scheduler is None and _worker_pool is None:
        return web.json_response(
            {
                "status": "unhealthy",
                "error": "No component registered",
            },
            status=503,
        )

    try:
        body: dict = {"status": "healthy" if _is_ready() else "stopped"}
        if _scheduler is not None:
            body["scheduler"] = _scheduler_status()
        if _worker_pool is not None:
            body["worker_pool"] = _worker_pool_status()
        return web.json_response(body)
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return web.json_response(
            {
                "status": "unhealthy",
                "error": str(e),
            },
            status=503,
        )


async def readiness_handler(request: web.Request) -> web.Response:
    """
    Readiness check endpoint.

    Returns:
        JSON response indicating if registered components are running
    """
    if not _is_ready():
        return web.json_response(
            {
                "status": "not_ready",
                "ready": False,
            },
            status=503,
        )

    return web.json_response(
        {
            "status": "ready",
            "ready": True,
        }
    )


async def liveness_handler(request: web.Request) -> web.Response:
    """Liveness check endpoint."""
    return web.json_response(
        {
            "status": "alive",
            "alive": True,
        }
    )


def create_health_app() -> web.Application:
    """Build the aiohttp application with health routes."""
    app = web.Application()
    app.router.add_get("/health", health_handler)
    app.router.add_get("/readiness", readiness_handler)
    app.router.add_get("/liveness", liveness_handler)
    return app


async def start_health_server(
    host: str = "0.0.0.0",
    port: int = 8081,
) -> web.AppRunner:
    """
    Start health check server.

    Args:
        host: Host to bind to
        port: Port to bind to

    Returns:
        AppRunner for cleanup
    """
    runner = web.AppRunner(create_health_app())
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"Health check server started on {host}:{port}")
    return runner


async def stop_health_server(
    runner: web.AppRunner,
    timeout: int = 5,
) -> None:
    """
    Stop health check server gracefully.

    Args:
        runner: AppRunner to cleanup
        timeout: Maximum time to wait for cleanup in seconds
    """
    logger.info("Stopping health check server...")
    try:
        await asyncio.wait_for(runner.cleanup(), timeout=timeout)
        logger.info("Health check server stopped successfully")
    except TimeoutError:
        logger.warning(f"Health check server cleanup timed out after {timeout}s")
    except Exception as e:
        logger.error(f"Error stopping health check server: {e}")
