"""Local JSON control API for Screen Time Manager.

A lightweight Flask app bound to 127.0.0.1 that exposes the command
processor's queries and commands to a parent's browser or script:
- Status, today's stats and history
- Pause / resume
- Extend, unlock, reset (passcode required)
- Settings and passcode changes (passcode required)

Outcomes map to HTTP status codes: 200 for ``ok`` and ``rejected`` (the
body says which), 403 for ``unauthorized``, 503 for ``failed`` and 400 for
malformed requests.
"""

import logging
import threading
from dataclasses import asdict
from typing import Any, Optional

from flask import Flask, jsonify, request

from screentime.core.commands import CommandProcessor
from screentime.core.errors import ConfigError
from screentime.core.models import CommandResult, Outcome
from screentime.core.settings import settings_from_dict, settings_to_dict, validate_settings
from screentime.reporting.formatter import TextFormatter

logger = logging.getLogger(__name__)

# Will be set by start_dashboard()
_processor_ref = None  # type: Optional[CommandProcessor]

_HTTP_STATUS = {
    Outcome.OK: 200,
    Outcome.REJECTED: 200,
    Outcome.UNAUTHORIZED: 403,
    Outcome.FAILED: 503,
}


def _result_response(action: str, result: CommandResult):
    body: dict[str, Any] = {
        "outcome": result.outcome.value,
        "reason": result.reason,
        "message": TextFormatter.format_result(action, result),
    }
    if result.availability is not None:
        body["availability"] = {
            "kind": result.availability.kind.value,
            "seconds": result.availability.seconds,
        }
    return jsonify(body), _HTTP_STATUS[result.outcome]


def _stats_to_dict(stats) -> dict[str, Any]:
    data = asdict(stats)
    data["date"] = stats.date.isoformat()
    data["status"] = stats.status.value
    data["weekday"] = stats.weekday_name
    data["pause_remaining_seconds"] = stats.pause_remaining_seconds
    data["pauses"] = [
        {"start": p.start.isoformat(), "end": p.end.isoformat(), "seconds": p.duration_seconds}
        for p in stats.pauses
    ]
    data["extensions"] = [
        {"timestamp": e.timestamp.isoformat(), "seconds": e.seconds}
        for e in stats.extensions
    ]
    return data


def create_flask_app() -> Flask:
    app = Flask(__name__)

    def _not_ready():
        return jsonify({"error": "not ready"}), 503

    @app.route("/api/status")
    def api_status():
        if _processor_ref is None:
            return _not_ready()
        return jsonify(_processor_ref.describe())

    @app.route("/api/stats")
    def api_stats():
        if _processor_ref is None:
            return _not_ready()
        stats = _processor_ref.today_stats()
        data = _stats_to_dict(stats)
        data["text"] = TextFormatter.format_today(stats)
        return jsonify(data)

    @app.route("/api/history")
    def api_history():
        if _processor_ref is None:
            return _not_ready()
        days = request.args.get("days", default=7, type=int)
        if days is None or days < 1:
            return jsonify({"error": "days must be a positive integer"}), 400
        summaries = _processor_ref.history(days)
        rows = []
        for s in summaries:
            row = asdict(s)
            row["date"] = s.date.isoformat()
            rows.append(row)
        return jsonify({"days": rows, "text": TextFormatter.format_history(summaries)})

    @app.route("/api/settings")
    def api_get_settings():
        if _processor_ref is None:
            return _not_ready()
        return jsonify(settings_to_dict(_processor_ref.settings()))

    @app.route("/api/pause", methods=["POST"])
    def api_pause():
        if _processor_ref is None:
            return _not_ready()
        return _result_response("pause", _processor_ref.request_pause())

    @app.route("/api/resume", methods=["POST"])
    def api_resume():
        if _processor_ref is None:
            return _not_ready()
        return _result_response("resume", _processor_ref.request_resume())

    @app.route("/api/extend", methods=["POST"])
    def api_extend():
        if _processor_ref is None:
            return _not_ready()
        data = request.get_json(silent=True) or {}
        minutes = data.get("minutes")
        if isinstance(minutes, bool) or not isinstance(minutes, int):
            return jsonify({"error": "minutes must be an integer"}), 400
        result = _processor_ref.request_extend(minutes, data.get("code"))
        return _result_response("extend", result)

    @app.route("/api/unlock", methods=["POST"])
    def api_unlock():
        if _processor_ref is None:
            return _not_ready()
        data = request.get_json(silent=True) or {}
        return _result_response("unlock", _processor_ref.request_unlock(data.get("code")))

    @app.route("/api/reset", methods=["POST"])
    def api_reset():
        if _processor_ref is None:
            return _not_ready()
        data = request.get_json(silent=True) or {}
        return _result_response("reset", _processor_ref.request_reset(data.get("code")))

    @app.route("/api/settings", methods=["POST"])
    def api_save_settings():
        if _processor_ref is None:
            return _not_ready()
        data = request.get_json(silent=True)
        if not isinstance(data, dict) or not isinstance(data.get("settings"), dict):
            return jsonify({"error": "settings object required"}), 400
        try:
            new_settings = settings_from_dict(data["settings"], _processor_ref.settings())
        except ConfigError as exc:
            return jsonify({"error": str(exc)}), 400
        problems = validate_settings(new_settings)
        if problems:
            return jsonify({"error": "invalid settings", "problems": problems}), 400
        result = _processor_ref.update_settings(new_settings, data.get("code"))
        return _result_response("save settings", result)

    @app.route("/api/passcode", methods=["POST"])
    def api_change_passcode():
        if _processor_ref is None:
            return _not_ready()
        data = request.get_json(silent=True) or {}
        fields = [data.get("old"), data.get("new"), data.get("confirm")]
        if not all(isinstance(f, str) for f in fields):
            return jsonify({"error": "old, new and confirm are required"}), 400
        result = _processor_ref.change_passcode(*fields)
        return _result_response("change passcode", result)

    return app


def start_dashboard(processor: CommandProcessor, port: int = 5566) -> threading.Thread:
    """Start the Flask control API in a daemon thread."""
    global _processor_ref
    _processor_ref = processor
    flask_app = create_flask_app()

    def _run():
        flask_app.run(host="127.0.0.1", port=port, debug=False, use_reloader=False)

    t = threading.Thread(target=_run, daemon=True, name="screentime-web")
    t.start()
    logger.info("Control API started at http://127.0.0.1:%d", port)
    return t
