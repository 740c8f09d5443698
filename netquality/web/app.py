"""Flask application factory and HTTP routes."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

from flask import Flask, Response, jsonify, request
from werkzeug.middleware.proxy_fix import ProxyFix

from .. import diagnostics
from ..exporter import CSVLogWriter
from ..packet_tests import probes
from ..packet_tests.engine import PacketTestMode
from ..upnp import PortMapping

if TYPE_CHECKING:
    from .. import ApplicationContext

LOGGER = logging.getLogger(__name__)


def create_web_app(context: "ApplicationContext") -> Flask:
    config = context.config
    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.web.secret_key

    if config.web.reverse_proxy_headers:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)  # type: ignore

    executor = context.executor
    upnp_sessions: Dict[str, Any] = {}

    @app.route("/")
    def index():
        return jsonify({"service": "netquality", "monitor": context.scheduler.status()})

    @app.get("/api/status")
    def api_status():
        latest = context.feed.latest
        return jsonify(
            {
                "monitor": context.scheduler.status(),
                "packet_tests": context.packet_tests.status(),
                "history_size": len(context.measurements.history),
                "latest": latest.to_dict() if latest else None,
            }
        )

    # ------------------------------------------------------------------
    # Monitor
    # ------------------------------------------------------------------

    @app.post("/api/monitor/start")
    def api_monitor_start():
        payload = request.get_json(silent=True) or {}
        interface = payload.get("interface") or config.monitor.interface
        try:
            interval = int(payload.get("interval_seconds", config.monitor.interval_seconds))
        except (TypeError, ValueError):
            return jsonify({"error": "interval_seconds must be an integer"}), 400
        if not context.scheduler.start(interface, interval):
            return jsonify({"error": "Monitor already running", "monitor": context.scheduler.status()}), 409
        return jsonify({"status": "started", "monitor": context.scheduler.status()})

    @app.post("/api/monitor/stop")
    def api_monitor_stop():
        stopped = context.scheduler.stop()
        return jsonify({"status": "stopped" if stopped else "idle", "monitor": context.scheduler.status()})

    @app.post("/api/monitor/run")
    def api_monitor_run():
        payload = request.get_json(silent=True) or {}
        interface = payload.get("interface") or config.monitor.interface
        executor.submit(context.scheduler.run_once, interface)
        return jsonify({"status": "queued", "task": "measurement"}), 202

    @app.get("/api/settings")
    def api_get_settings():
        return jsonify(_settings_dict(context))

    @app.post("/api/settings")
    def api_update_settings():
        payload = request.get_json(silent=True)
        if not payload:
            return jsonify({"error": "No settings provided"}), 400
        try:
            context.settings.update(**payload)
        except (TypeError, ValueError) as exc:
            return jsonify({"error": str(exc)}), 400
        context.events.log_line(f"Settings updated (effective from next measurement): {payload}", LOGGER)
        return jsonify(_settings_dict(context))

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @app.get("/api/history")
    def api_history():
        return jsonify([m.to_dict() for m in context.measurements.history.snapshot()])

    @app.get("/api/measurements")
    def api_measurements():
        start = _parse_datetime(request.args.get("start"))
        end = _parse_datetime(request.args.get("end"))
        limit = request.args.get("limit", type=int)
        rows = context.store.get_measurements(limit=limit, start=start, end=end)
        return jsonify([row.to_dict() for row in rows])

    @app.get("/api/chart")
    def api_chart():
        return jsonify({"monitor": context.feed.chart(), "packet_tests": context.packet_tests.series_snapshot()})

    @app.get("/api/log")
    def api_log():
        limit = request.args.get("limit", default=100, type=int)
        lines = context.feed.log.snapshot()
        return jsonify(lines[-limit:] if limit > 0 else [])

    @app.get("/api/export/csv")
    def api_export_csv():
        """Full CSV log, or the stored measurements between ``start`` and ``end``."""
        start = _parse_datetime(request.args.get("start"))
        end = _parse_datetime(request.args.get("end"))
        if start or end:
            body = CSVLogWriter.build_csv(context.store.get_measurements(start=start, end=end)).getvalue()
        else:
            body = context.csv_log.read_text()
        filename = f"network_log-{datetime.now().strftime('%Y%m%dT%H%M%S')}.csv"
        return Response(
            body,
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )

    @app.post("/api/export/json")
    def api_export_json():
        history = context.measurements.history.snapshot()
        try:
            path = context.json_exporter.export(history)
        except OSError as exc:
            LOGGER.error("JSON export failed: %s", exc)
            return jsonify({"error": f"JSON export failed: {exc}"}), 500
        return jsonify({"status": "exported", "path": str(path), "count": len(history)})

    # ------------------------------------------------------------------
    # Packet tests
    # ------------------------------------------------------------------

    @app.get("/api/packet")
    def api_packet_status():
        return jsonify(context.packet_tests.status())

    @app.post("/api/packet/<mode>/toggle")
    def api_packet_toggle(mode: str):
        payload = request.get_json(silent=True) or {}
        engine = context.packet_tests
        try:
            selected = PacketTestMode(mode)
            if selected is PacketTestMode.UNICAST:
                running = engine.toggle_unicast_udp(payload.get("host"), _optional_int(payload.get("port")))
            elif selected is PacketTestMode.BROADCAST:
                running = engine.toggle_broadcast(payload.get("ipv4"))
            elif selected is PacketTestMode.MULTICAST:
                running = engine.toggle_multicast(payload.get("group"), _optional_int(payload.get("port")))
            else:
                running = engine.toggle_anycast(payload.get("target", ""))
        except KeyError as exc:
            return jsonify({"error": str(exc.args[0]) if exc.args else "unknown target"}), 400
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify({"mode": mode, "running": running, "target": engine.active_target(selected)})

    @app.post("/api/packet/unicast/start")
    def api_packet_unicast_start():
        payload = request.get_json(silent=True) or {}
        try:
            port = _optional_int(payload.get("port"))
        except (TypeError, ValueError):
            return jsonify({"error": "port must be an integer"}), 400
        engine = context.packet_tests
        engine.start_unicast_udp(payload.get("host"), port)
        return jsonify({"mode": "unicast", "running": True, "target": engine.active_target(PacketTestMode.UNICAST)})

    @app.post("/api/packet/unicast/ping")
    def api_packet_ping():
        payload = request.get_json(silent=True) or {}
        context.packet_tests.ping_once(payload.get("host"))
        return jsonify({"status": "queued", "task": "unicast_ping"}), 202

    @app.post("/api/packet/stop")
    def api_packet_stop():
        context.packet_tests.stop_all()
        return jsonify(context.packet_tests.status())

    # ------------------------------------------------------------------
    # UPnP
    # ------------------------------------------------------------------

    @app.post("/api/upnp/<action>")
    def api_upnp(action: str):
        if action not in ("add", "delete"):
            return jsonify({"error": f"Unknown UPnP action '{action}'"}), 404
        payload = request.get_json(silent=True) or {}
        try:
            mapping = PortMapping(
                external_port=int(payload["external_port"]),
                protocol=payload.get("protocol", "TCP"),
                internal_port=_optional_int(payload.get("internal_port")),
                internal_client=payload.get("internal_client") or probes.local_ipv4(),
                description=payload.get("description", "netquality"),
            )
        except KeyError:
            return jsonify({"error": "external_port is required"}), 400
        except (TypeError, ValueError) as exc:
            return jsonify({"error": str(exc)}), 400
        executor.submit(_run_upnp_task, context, action, mapping, upnp_sessions)
        return jsonify({"status": "queued", "task": f"upnp_{action}"}), 202

    @app.get("/api/upnp/last")
    def api_upnp_last():
        session = upnp_sessions.get("last")
        return jsonify(session.to_dict() if session else None)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    @app.post("/api/diagnostics/<tool>")
    def api_diagnostics(tool: str):
        payload = request.get_json(silent=True) or {}
        transcript = context.feed.transcript(tool)
        if tool == "traceroute":
            host = (payload.get("host") or "").strip()
            if not host:
                return jsonify({"error": "host is required"}), 400
            task = lambda: diagnostics.traceroute(host, transcript.append)  # noqa: E731
        elif tool == "netstat":
            task = lambda: diagnostics.netstat(transcript.append)  # noqa: E731
        elif tool == "lanscan":
            prefix = diagnostics.lan_prefix(payload.get("ipv4") or probes.local_ipv4())
            task = lambda: context.lan_scanner.scan(prefix, transcript.append)  # noqa: E731
        else:
            return jsonify({"error": f"Unknown diagnostic '{tool}'"}), 404
        transcript.clear()
        executor.submit(_run_diagnostic_task, tool, task)
        return jsonify({"status": "queued", "task": tool}), 202

    @app.get("/api/diagnostics/<tool>")
    def api_diagnostics_output(tool: str):
        return jsonify(context.feed.transcript(tool).snapshot())

    return app


def _settings_dict(context: "ApplicationContext") -> dict:
    settings = context.settings.snapshot()
    return {name: getattr(settings, name) for name in settings.__dataclass_fields__}


def _optional_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    return int(value)


def _parse_datetime(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    candidate = raw.replace("Z", "+00:00") if raw.endswith("Z") else raw
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        LOGGER.warning("Invalid datetime filter: %s", raw)
        return None


def _run_upnp_task(context: "ApplicationContext", action: str, mapping: PortMapping, sessions: Dict[str, Any]) -> None:
    try:
        if action == "add":
            session = context.upnp.add_port_mapping(mapping)
        else:
            session = context.upnp.delete_port_mapping(mapping)
        sessions["last"] = session
    except Exception as exc:  # pylint: disable=broad-except
        LOGGER.exception("UPnP task failed: %s", exc)


def _run_diagnostic_task(tool: str, task) -> None:
    try:
        task()
    except Exception as exc:  # pylint: disable=broad-except
        LOGGER.exception("Diagnostic %s failed: %s", tool, exc)
