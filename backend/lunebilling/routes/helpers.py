# Overview: Shared request parsing and response helpers for the API blueprints.

from flask import jsonify, request

from ..services.lifecycle_service import LifecycleErrorKind, LifecycleResult
from ..validation import ValidationError


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def query_bool(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in ("1", "true", "yes")


def query_int(name: str) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def lifecycle_response(result: LifecycleResult, message: str, *, value_key: str | None = None):
    """
    Map a LifecycleResult onto a JSON response.

    value_key nests the result value (e.g. "deleted" for permanent deletes).
    """
    if result.ok:
        body = {"message": message}
        if value_key:
            body[value_key] = result.value
        else:
            body.update(result.value or {})
        return jsonify(body), 200

    error = result.error
    if error.kind == LifecycleErrorKind.DEPENDENCY_FAILURE:
        return jsonify({"error": "Internal server error", "kind": error.kind.value}), error.http_status
    return jsonify({"error": error.message, "kind": error.kind.value}), error.http_status
