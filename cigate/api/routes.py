"""API routes for templates and runs."""

import logging
import uuid

from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError as PydanticValidationError

from cigate.config import Config
from cigate.engine import RunEngine, RunRequest
from cigate.errors import CatalogError, UnknownTemplate, ValidationError
from cigate.events import get_event_bus
from cigate.report import build_report
from cigate.utils.retry import RetryConfig

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")


def _catalog():
    return current_app.extensions["cigate"]["catalog"]


def _backend():
    return current_app.extensions["cigate"]["backend"]


@api_bp.route("/templates", methods=["GET"])
def list_templates():
    return jsonify({"templates": _catalog().names()})


@api_bp.route("/templates/<name>", methods=["GET"])
def get_template(name: str):
    try:
        return jsonify(_catalog().describe(name))
    except UnknownTemplate as e:
        return jsonify(e.to_dict()), 404


@api_bp.route("/runs", methods=["POST"])
def create_run():
    """
    Plan or run a template.

    Body:
        {"template": "...", "inputs": {...}, "secret_refs": [...],
         "dry_run": false, "timeout": 600}

    Returns the planned graph for a dry run, otherwise the run report.
    """
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return jsonify({"error": "InvalidRequest", "message": "request body must be a JSON object"}), 400
    data = dict(payload)
    dry_run = bool(data.pop("dry_run", False))
    timeout = data.pop("timeout", None)

    try:
        run_request = RunRequest(**data)
    except PydanticValidationError as e:
        return jsonify({"error": "InvalidRequest", "message": str(e)}), 400

    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
        return jsonify({"error": "InvalidRequest", "message": "timeout must be a positive number"}), 400

    engine = RunEngine(
        _catalog(),
        _backend(),
        default_timeout=Config.JOB_TIMEOUT_SECONDS,
        retry_config=RetryConfig.from_settings(Config),
        fail_fast=bool(current_app.config.get("FAIL_FAST", False)),
    )

    try:
        if dry_run:
            graph = engine.plan(run_request)
            return jsonify({"graph": graph.to_dict()})

        run_id = str(uuid.uuid4())
        verdict = engine.run(run_request, timeout=timeout, run_id=run_id)
        return jsonify({"run_id": run_id, "exit_code": verdict.exit_code, "report": build_report(verdict)})

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except CatalogError as e:
        logger.error(f"Catalog error running '{run_request.template}': {e.message}")
        return jsonify(e.to_dict()), 500


@api_bp.route("/runs/<run_id>/events", methods=["GET"])
def get_run_events(run_id: str):
    events = get_event_bus().get_history(run_id=run_id)
    return jsonify({"run_id": run_id, "events": [event.to_dict() for event in events]})
