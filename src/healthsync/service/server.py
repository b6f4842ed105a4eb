"""
HealthSync long-running service (HTTP lifecycle API + background sync runs).

Provides:
- REST API to init, pause, resume and restart partner sync jobs
- Job and checkpoint queries, slot statistics
- Recovery of jobs left running by a previous process
"""

from __future__ import annotations

from pathlib import Path

from aiohttp import web

from healthsync.adapters.registry import AdapterRegistry
from healthsync.config import Config, load_config
from healthsync.core.dispatcher import Dispatcher
from healthsync.core.retry import RetryPolicy
from healthsync.core.state import StateStore
from healthsync.service.api import setup_routes
from healthsync.service.api.middleware import error_middleware, setup_auth
from healthsync.utils.logging import get_logger, setup_logging_from_config

logger = get_logger("healthsync.service")


class SyncService:
    """Wires configuration, state store, adapters and dispatcher together."""

    def __init__(
        self,
        config: Config,
        *,
        state_store: StateStore | None = None,
        registry: AdapterRegistry | None = None,
    ):
        self.config = config
        self.state_store = state_store or StateStore(config.data)
        self.registry = registry or AdapterRegistry(config.partners)
        self.dispatcher = Dispatcher(
            self.state_store,
            self.registry,
            max_concurrent_jobs=int(config.get("sync.max_concurrent_jobs", 5)),
            batch_size=int(config.get("sync.batch_size", 100)),
            retry_policy=RetryPolicy.from_config(config.get("sync.retry", {})),
        )

    async def start(self) -> None:
        """Re-admit jobs left running by a previous process."""
        recovered = await self.dispatcher.recover()
        logger.info(
            f"Sync service ready: {self.dispatcher.slots.capacity} slot(s), {len(recovered)} job(s) recovered"
        )

    async def stop(self, timeout: float = 30.0) -> None:
        await self.dispatcher.shutdown(timeout=timeout)
        await self.registry.close()
        self.state_store.close()
        logger.info("Sync service stopped")


SERVICE_KEY = web.AppKey("service", SyncService)


def create_app(service: SyncService) -> web.Application:
    """Build the aiohttp application for a service."""
    app = web.Application(middlewares=[error_middleware])
    app[SERVICE_KEY] = service

    setup_auth(app, service.config.get("service.auth_secret"))
    setup_routes(app, service)

    async def on_startup(app: web.Application) -> None:
        await service.start()

    async def on_cleanup(app: web.Application) -> None:
        await service.stop()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def run_service(
    *,
    project_dir: Path,
    host: str | None = None,
    port: int | None = None,
    verbose: bool = False,
) -> None:
    """
    Run the HealthSync service (blocking).

    Args:
        project_dir: Directory holding the optional ``healthsync.yaml``
        host: Host to bind to (default: ``service.host``)
        port: Port to bind to (default: ``service.port``)
        verbose: Force DEBUG logging
    """
    config = load_config(project_dir)
    if verbose:
        config.data.setdefault("logging", {})["level"] = "DEBUG"
    setup_logging_from_config(config.data, project_dir=Path(project_dir))

    host = host or config.get("service.host", "0.0.0.0")
    port = port or int(config.get("service.port", 3000))

    app = create_app(SyncService(config))
    logger.info(f"HealthSync service starting on http://{host}:{port}")

    # Request logging goes through error_middleware
    web.run_app(app, host=host, port=port, access_log=None)
