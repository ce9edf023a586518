"""Application bootstrap for kexporter.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → metrics → K8s client → metadata cache
              → receivers → router → event watcher → metrics HTTP server

Shutdown is graceful: the watcher stops first so no new events enter the
pipeline, then the registry drains in-flight sends and closes its sinks,
then the HTTP server and the K8s client go away. Each step's error is caught
and logged independently.

SIGHUP re-reads the routing file and swaps the route tree in place.
Receivers are bound once at startup; a reload that refers to receivers
unknown to the running registry is rejected.
"""

from __future__ import annotations

import asyncio
import signal
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from kexporter.config import ConfigError, load_config, load_routing_config
from kexporter.models.config import ExporterConfig
from kexporter.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from kexporter.collector.event_watcher import EventWatcher
    from kexporter.exporter.registry import ReceiverRegistry
    from kexporter.observability.metrics import MetricsStore
    from kexporter.routing.route import Router

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class ExporterApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is idempotent: calling it on an app that was never started
    (or already stopped) is safe.
    """

    def __init__(self) -> None:
        self.config: ExporterConfig | None = None

        self._metrics: MetricsStore | None = None
        self._api_client: Any = None
        self._core_v1: Any = None
        self._cache: object | None = None
        self._registry: ReceiverRegistry | None = None
        self._router: Router | None = None
        self._watcher: EventWatcher | None = None
        self._http_server: Any = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        The caller (main()) turns this into a non-zero exit.
        """
        # --- 1. Configuration -------------------------------------------
        try:
            self.config = load_config()
        except ConfigError as exc:
            raise _ComponentError("config", exc) from exc

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, self.config.log.format)
        self._log = get_logger("app")
        self._log.info("kexporter starting", version=_kexporter_version())

        # --- 3. Metrics store -------------------------------------------
        await self._start_metrics()

        # --- 4. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 5. Object metadata cache ------------------------------------
        await self._start_cache()

        # --- 6. Receivers and router -------------------------------------
        await self._start_receivers()

        # --- 7. Event watcher --------------------------------------------
        await self._start_watcher()

        # --- 8. Metrics HTTP server --------------------------------------
        await self._start_http()

        self._running = True
        self._log.info("kexporter started", metrics_port=self.config.metrics.port)

    # ------------------------------------------------------------------
    # Component startup helpers
    # ------------------------------------------------------------------

    async def _start_metrics(self) -> None:
        assert self.config is not None
        try:
            from kexporter.observability.metrics import MetricsStore

            self._metrics = MetricsStore(prefix=self.config.metrics.prefix)
        except Exception as exc:
            raise _ComponentError("metrics", exc) from exc

    async def _start_k8s_client(self) -> None:
        """Initialise the kubernetes-asyncio client from in-cluster config or kubeconfig."""
        assert self._log is not None
        self._log.debug("starting k8s client")
        try:
            import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            try:
                k8s_config.load_incluster_config()
                self._log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("k8s client configured from kubeconfig")

            self._api_client = k8s_client.ApiClient()
            self._core_v1 = k8s_client.CoreV1Api(self._api_client)
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_cache(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self._metrics is not None
        if self.config.watcher.omit_lookup:
            self._log.info("object metadata lookup disabled (omit_lookup=true)")
            return
        try:
            from kexporter.cache import DynamicObjectReader, ObjectMetadataCache

            self._cache = ObjectMetadataCache(
                reader=DynamicObjectReader(self._api_client),
                metrics=self._metrics,
                capacity=self.config.cache.size,
            )
            self._log.info("object metadata cache started", capacity=self.config.cache.size)
        except Exception as exc:
            raise _ComponentError("cache", exc) from exc

    async def _start_receivers(self) -> None:
        """Load the routing file, build every sink, and wire the router."""
        assert self._log is not None
        assert self.config is not None
        assert self._metrics is not None
        self._log.debug("starting receivers", config_file=self.config.config_file)
        try:
            from kexporter.exporter.registry import ReceiverRegistry
            from kexporter.routing.route import Router
            from kexporter.sinks import build_sink

            routing = load_routing_config(self.config.config_file)
            registry = ReceiverRegistry(
                metrics=self._metrics,
                send_timeout=self.config.delivery.send_timeout_seconds,
                max_in_flight=self.config.delivery.max_in_flight,
                max_queued=self.config.delivery.max_queued,
            )
            # Assign before building sinks so stop() closes any already built.
            self._registry = registry
            for receiver in routing.receivers:
                registry.register(str(receiver["name"]), build_sink(receiver))

            self._router = Router(routing.route, registry)
            self._log.info("receivers started", receivers=registry.names)
        except Exception as exc:
            raise _ComponentError("receivers", exc) from exc

    async def _start_watcher(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self._metrics is not None
        assert self._router is not None
        self._log.debug("starting event watcher")
        try:
            from kexporter.collector.event_watcher import EventWatcher

            watcher = EventWatcher(
                self._core_v1,
                handler=self._router.process_event,
                metrics=self._metrics,
                metadata_cache=self._cache,  # type: ignore[arg-type]
                namespace=self.config.watcher.namespace,
                max_event_age=timedelta(seconds=self.config.watcher.max_event_age_seconds),
                omit_lookup=self.config.watcher.omit_lookup,
                cluster_name=self.config.cluster_name,
            )
            await watcher.start()
            self._watcher = watcher
            self._log.info("event watcher started", namespace=self.config.watcher.namespace or "<all>")
        except Exception as exc:
            raise _ComponentError("watcher", exc) from exc

    async def _start_http(self) -> None:
        """Start the uvicorn server for /metrics and the health endpoints."""
        assert self._log is not None
        assert self.config is not None
        assert self._metrics is not None
        self._log.debug("starting metrics http server")
        try:
            import uvicorn  # type: ignore[import-untyped]

            from kexporter.api import create_app

            watcher = self._watcher
            fastapi_app = create_app(
                registry=self._metrics.registry,
                ready=lambda: watcher is not None and watcher.running,
            )
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.metrics.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="metrics-server")
            self._background_tasks.append(task)
            self._http_server = server
            self._log.info("metrics http server started", port=self.config.metrics.port)
        except Exception as exc:
            raise _ComponentError("http", exc) from exc

    # ------------------------------------------------------------------
    # Reload
    # ------------------------------------------------------------------

    def reload_routes(self) -> bool:
        """Re-read the routing file and swap the route tree.

        Returns False (keeping the current tree) when the file is invalid or
        refers to receivers that were not bound at startup.
        """
        log = self._log or get_logger("app")
        if self.config is None or self._router is None or self._registry is None:
            return False
        try:
            routing = load_routing_config(self.config.config_file)
        except ConfigError as exc:
            log.error("route reload failed; keeping current routes", error=str(exc))
            return False

        unknown = sorted(set(routing.route.receiver_names()) - set(self._registry.names))
        if unknown:
            log.error("route reload refers to unbound receivers; keeping current routes", receivers=unknown)
            return False

        self._router.swap(routing.route)
        return True

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kexporter shutting down")
        self._running = False

        if self._watcher is not None:
            await self._stop_step("watcher", self._watcher.stop())
            self._watcher = None

        if self._registry is not None:
            await self._stop_step("receivers", self._registry.close(drain_timeout=_SHUTDOWN_GRACE_SECONDS))
            self._registry = None

        if self._http_server is not None:
            self._http_server.should_exit = True
            self._http_server = None

        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        self._cache = None
        await self._stop_k8s_client()

        log.info("kexporter stopped")

    async def _stop_step(self, name: str, awaitable: Any) -> None:
        """Await one shutdown step, bounded and with errors logged."""
        log = self._log or get_logger("app")
        try:
            await asyncio.wait_for(awaitable, timeout=_SHUTDOWN_GRACE_SECONDS * 2)
        except TimeoutError:
            log.warning("component stop timed out", component=name)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))

    async def _stop_k8s_client(self) -> None:
        """Close the kubernetes-asyncio ApiClient connection pool."""
        if self._api_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await self._api_client.close()
        except Exception as exc:
            log.debug("k8s client close raised (non-fatal)", error=str(exc))
        self._api_client = None
        self._core_v1 = None


def _kexporter_version() -> str:
    from kexporter import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = ExporterApp()
    loop = asyncio.get_running_loop()
    stopped = asyncio.Event()

    shutdown_triggered = False

    async def _shutdown() -> None:
        await app.stop()
        stopped.set()

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(_shutdown(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)
    loop.add_signal_handler(signal.SIGHUP, app.reload_routes)

    try:
        await app.start()
        await stopped.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()


def run() -> None:
    """Console-script entry point."""
    asyncio.run(main())
