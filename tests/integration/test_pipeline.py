"""End-to-end pipeline tests: watcher -> cache -> router -> registry -> sinks.

The API server is replaced by an in-memory reader and notifications are fed
straight into the watcher; everything downstream is the real code.
"""

from __future__ import annotations

import io
import json
from datetime import timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest
from structlog.testing import capture_logs

from kexporter.app import ExporterApp
from kexporter.cache.metadata import ObjectMetadataCache
from kexporter.collector.event_watcher import EventWatcher
from kexporter.config import load_config, load_routing_config
from kexporter.exporter.registry import ReceiverRegistry
from kexporter.observability.metrics import MetricsStore
from kexporter.routing.route import Route, Router
from kexporter.sinks import StdoutSink
from tests.conftest import NOW, FakeReader, RecordingSink, make_enhanced_event, make_raw_event

pytestmark = pytest.mark.integration


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Pipeline:
    def __init__(
        self,
        metrics: MetricsStore,
        reader: FakeReader,
        route: dict,
        sinks: dict[str, RecordingSink | StdoutSink],
        max_event_age: timedelta = timedelta(seconds=300),
        cluster_name: str = "",
    ) -> None:
        self.registry = ReceiverRegistry(metrics, send_timeout=1.0)
        for name, sink in sinks.items():
            self.registry.register(name, sink)
        self.router = Router(Route.from_dict(route), self.registry)
        self.watcher = EventWatcher(
            core_v1=SimpleNamespace(list_event_for_all_namespaces=None, list_namespaced_event=None),
            handler=self.router.process_event,
            metrics=metrics,
            metadata_cache=ObjectMetadataCache(reader, metrics, capacity=64),
            max_event_age=max_event_age,
            cluster_name=cluster_name,
            startup_time=NOW,
            clock=lambda: NOW,
        )

    async def feed(self, *raws: dict, event_type: str = "ADDED") -> None:
        for raw in raws:
            await self.watcher.handle_notification(event_type, raw)
        await self.registry.drain(timeout=2)


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestDelivery:
    async def test_fresh_event_reaches_console(self, metrics: MetricsStore, web_reader: FakeReader) -> None:
        console = RecordingSink()
        pipeline = _Pipeline(metrics, web_reader, {"routes": [{"receivers": ["console"]}]}, {"console": console})

        await pipeline.feed(make_raw_event())

        assert len(console.received) == 1
        ev = console.received[0]
        assert ev.reason == "Failed"
        assert ev.involved_object.labels == {"app": "web"}
        assert ev.involved_object.deleted is False
        assert metrics.value("events_sent") == 1
        assert metrics.value("events_discarded") == 0

    async def test_backlog_event_discarded_quietly(self, metrics: MetricsStore, web_reader: FakeReader) -> None:
        console = RecordingSink()
        pipeline = _Pipeline(
            metrics,
            web_reader,
            {"receivers": ["console"]},
            {"console": console},
            max_event_age=timedelta(seconds=5),
        )

        with capture_logs() as logs:
            await pipeline.feed(make_raw_event())

        assert console.received == []
        assert metrics.value("events_discarded") == 1
        assert metrics.value("events_sent") == 0
        assert not [entry for entry in logs if entry["event"] == "event_discarded_too_old"]
        assert web_reader.calls == []

    async def test_deleted_object_still_routed(self, metrics: MetricsStore) -> None:
        console = RecordingSink()
        pipeline = _Pipeline(metrics, FakeReader(), {"receivers": ["console"]}, {"console": console})

        await pipeline.feed(make_raw_event())

        io_ = console.received[0].involved_object
        assert io_.deleted is True
        assert io_.labels == {}
        assert io_.annotations == {}
        assert io_.owner_references == ()

    async def test_fan_out_with_failing_sink(self, metrics: MetricsStore, web_reader: FakeReader) -> None:
        good = RecordingSink()
        bad = RecordingSink(error=RuntimeError("503 from endpoint"))
        route = {
            "routes": [
                {"match": [{"type": "Warning"}], "receivers": ["bad"]},
                {"match": [{"labels": {"app": "^web$"}}], "receivers": ["good"]},
            ]
        }
        pipeline = _Pipeline(metrics, web_reader, route, {"good": good, "bad": bad})

        await pipeline.feed(make_raw_event(), make_raw_event(reason="BackOff"))

        assert [ev.reason for ev in good.received] == ["Failed", "BackOff"]
        assert metrics.value("send_event_errors", receiver="bad") == 2
        assert metrics.value("send_event_errors", receiver="good") == 0

    async def test_drop_rule_filters_namespace(self, metrics: MetricsStore, web_reader: FakeReader) -> None:
        console = RecordingSink()
        route = {"drop": [{"namespace": "^kube-system$"}], "receivers": ["console"]}
        pipeline = _Pipeline(metrics, web_reader, route, {"console": console})

        await pipeline.feed(make_raw_event(namespace="kube-system"), make_raw_event())

        assert [ev.namespace for ev in console.received] == ["default"]

    async def test_repeat_observations_hit_cache(self, metrics: MetricsStore, web_reader: FakeReader) -> None:
        console = RecordingSink()
        pipeline = _Pipeline(metrics, web_reader, {"receivers": ["console"]}, {"console": console})

        await pipeline.feed(make_raw_event(count=1))
        await pipeline.feed(make_raw_event(count=2), event_type="MODIFIED")

        assert [ev.event.count for ev in console.received] == [1, 2]
        assert len(web_reader.calls) == 1
        assert metrics.value("kube_api_read_cache_hits") == 1

    async def test_stdout_sink_output(self, metrics: MetricsStore, web_reader: FakeReader) -> None:
        stream = io.StringIO()
        pipeline = _Pipeline(
            metrics,
            web_reader,
            {"receivers": ["dump"]},
            {"dump": StdoutSink(stream=stream)},
            cluster_name="prod-eu",
        )

        await pipeline.feed(make_raw_event())

        doc = json.loads(stream.getvalue())
        assert doc["clusterName"] == "prod-eu"
        assert doc["involvedObject"]["ownerReferences"][0]["name"] == "web-7b4f8c6d"
        assert "managedFields" not in doc["metadata"]


# ---------------------------------------------------------------------------
# Route reload
# ---------------------------------------------------------------------------

_INITIAL = """
receivers:
  - name: a
    stdout: {}
  - name: b
    stdout: {}
route:
  receivers: [a]
"""

_SWITCHED = """
receivers:
  - name: a
    stdout: {}
  - name: b
    stdout: {}
route:
  receivers: [b]
"""

_UNBOUND = """
receivers:
  - name: c
    stdout: {}
route:
  receivers: [c]
"""


class TestReloadRoutes:
    def _app(self, path: Path, metrics: MetricsStore, monkeypatch: pytest.MonkeyPatch) -> tuple[ExporterApp, dict]:
        monkeypatch.setenv("KEXPORTER_CONFIG_FILE", str(path))
        app = ExporterApp()
        app.config = load_config()
        registry = ReceiverRegistry(metrics)
        sinks = {"a": RecordingSink(), "b": RecordingSink()}
        for name, sink in sinks.items():
            registry.register(name, sink)
        app._registry = registry
        app._router = Router(load_routing_config(path).route, registry)
        return app, sinks

    async def test_reload_swaps_tree(
        self, tmp_path: Path, metrics: MetricsStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(_INITIAL, encoding="utf-8")
        app, sinks = self._app(path, metrics, monkeypatch)

        path.write_text(_SWITCHED, encoding="utf-8")
        assert app.reload_routes() is True

        assert app._router is not None
        app._router.process_event(make_enhanced_event())
        assert app._registry is not None
        await app._registry.drain(timeout=1)
        assert sinks["a"].received == []
        assert len(sinks["b"].received) == 1

    async def test_reload_rejects_unbound_receivers(
        self, tmp_path: Path, metrics: MetricsStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(_INITIAL, encoding="utf-8")
        app, _ = self._app(path, metrics, monkeypatch)
        assert app._router is not None
        before = app._router.route

        path.write_text(_UNBOUND, encoding="utf-8")
        assert app.reload_routes() is False
        assert app._router.route is before

    async def test_reload_keeps_tree_on_bad_file(
        self, tmp_path: Path, metrics: MetricsStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(_INITIAL, encoding="utf-8")
        app, _ = self._app(path, metrics, monkeypatch)
        assert app._router is not None
        before = app._router.route

        path.write_text("route: [", encoding="utf-8")
        assert app.reload_routes() is False
        assert app._router.route is before

