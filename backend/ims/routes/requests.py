# backend/ims/routes/requests.py
"""
Material Request API Routes

- POST /api/requests                                 create (mode DRAFT|SUBMITTED)
- GET  /api/requests                                 requests visible to the actor
- GET  /api/requests/:rq                             one request with permission flags
- PUT  /api/requests/:rq                             save from the editor
- POST /api/requests/:rq/lines/:key/<action>         approve|unapprove|reject|remove|restore
- POST /api/requests/:rq/cancel                      explicit cancel
- POST /api/requests/:rq/transitions/<action>        start-preparing|cancel-preparing|mark-ready|close
- POST /api/requests/:rq/read                        mark as read

CONCURRENCY:
- Every write takes expected_revision (the updated_at_ms the client last
  read). A stale value returns 409 with code "revision-conflict" and nothing
  is written; the client must reload.

SECURITY:
- The actor is resolved from the X-User-Id header (see require_actor), never
  from the request body.
- Denied actions return 403 with a generic message and are recorded in
  security_events after the failed transaction has been rolled back.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..config import EditorSettings
from ..extensions import db
from ..decorators import require_actor
from ..services import request_service, transition_service
from ..services.concurrency import RevisionConflictError
from ..services.document_service import RequestNotFoundError
from ..services.inventory_service import InventoryViolationError
from ..services.lifecycle_service import LifecycleError
from ..services.permission_service import PermissionDeniedError, log_security_event
from ..services.presentation_service import list_row, request_view
from ..services.transition_service import StockShortageError
from ..validation import ValidationError, coerce_int, parse_expected_revision


requests_bp = Blueprint("requests", __name__, url_prefix="/api/requests")


def _settings() -> EditorSettings:
    return EditorSettings.from_config(current_app.config)


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _request_payload(rq):
    return {"request": request_view(rq, g.actor)}


def _run(action: str, resource: str, fn, *, success_status: int = 200):
    """
    Call a service and map its domain errors to HTTP responses.

    fn returns the JSON body for the success case.
    """
    try:
        return jsonify(fn()), success_status
    except InventoryViolationError as e:
        return jsonify({"error": str(e), "code": e.code, "item_id": e.item_id}), 400
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        db.session.rollback()
        log_security_event(
            g.actor.uid,
            "PERMISSION_DENIED",
            resource=resource,
            action=action,
            reason=str(e),
        )
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except RequestNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except RevisionConflictError as e:
        return jsonify({"error": str(e), "code": e.code, "live_revision": e.live}), 409
    except StockShortageError as e:
        return jsonify({"error": str(e), "code": e.code, "item_id": e.item_id}), 409
    except LifecycleError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s %s", action, resource)
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.post("")
@require_actor
def create_request_route():
    """
    Create a request.

    Request body:
        {
            "mode": "DRAFT" | "SUBMITTED",
            "project_id": "P-1",
            "engineer_id": "E-1",
            "urgent": false,
            "note": "",
            "lines": [{"item_id": "HSE-001", "unit": "PCS", "qty": 2}]
        }
    """
    data = _body()
    return _run(
        "create",
        "requests",
        lambda: _request_payload(request_service.create_request(g.actor, data, data.get("mode"), _settings())),
        success_status=201,
    )


@requests_bp.get("")
@require_actor
def list_requests_route():
    status = request.args.get("status")
    raw_limit = request.args.get("limit")

    def _list():
        limit = coerce_int("limit", raw_limit) if raw_limit else 100
        if limit < 1 or limit > 500:
            raise ValidationError("limit must be between 1 and 500")
        rows = request_service.list_visible_requests(g.actor, status=status, limit=limit)
        return {"requests": [list_row(rq, g.actor) for rq in rows]}

    return _run("list", "requests", _list)


@requests_bp.get("/<rq_code>")
@require_actor
def get_request_route(rq_code: str):
    return _run(
        "view",
        f"requests/{rq_code}",
        lambda: {"request": request_service.get_request(rq_code, g.actor)},
    )


@requests_bp.put("/<rq_code>")
@require_actor
def save_request_route(rq_code: str):
    """
    Save from the editor.

    Body is the create payload plus "expected_revision". Lines carry an
    optional "key" to match stored lines.
    """
    data = _body()

    def _save():
        expected = parse_expected_revision(data.get("expected_revision"))
        rq = request_service.save_request(rq_code, g.actor, data, data.get("mode"), expected, _settings())
        return _request_payload(rq)

    return _run("save", f"requests/{rq_code}", _save)


@requests_bp.post("/<rq_code>/lines/<line_key>/<action>")
@require_actor
def line_action_route(rq_code: str, line_key: str, action: str):
    handler = request_service.LINE_ACTIONS.get(action)
    if handler is None:
        return jsonify({"error": f"Unknown line action {action}"}), 404
    data = _body()

    def _act():
        expected = parse_expected_revision(data.get("expected_revision"))
        rq = handler(rq_code, line_key, g.actor, expected, _settings())
        return _request_payload(rq)

    return _run(f"{action}_line", f"requests/{rq_code}", _act)


@requests_bp.post("/<rq_code>/cancel")
@require_actor
def cancel_request_route(rq_code: str):
    data = _body()

    def _cancel():
        expected = parse_expected_revision(data.get("expected_revision"))
        rq = request_service.cancel_request(rq_code, g.actor, expected, _settings())
        return _request_payload(rq)

    return _run("cancel", f"requests/{rq_code}", _cancel)


@requests_bp.post("/<rq_code>/transitions/<action>")
@require_actor
def transition_route(rq_code: str, action: str):
    """
    Store-team transitions.

    Error responses:
        403: Not store team for the request's department (or not allowed to close)
        409: revision-conflict, stock-shortage, or transition not allowed from
             the current status
    """
    handler = transition_service.TRANSITIONS.get(action)
    if handler is None:
        return jsonify({"error": f"Unknown transition {action}"}), 404
    data = _body()

    def _transition():
        expected = parse_expected_revision(data.get("expected_revision"))
        rq = handler(rq_code, g.actor, expected, _settings())
        return _request_payload(rq)

    return _run(action, f"requests/{rq_code}", _transition)


@requests_bp.post("/<rq_code>/read")
@require_actor
def mark_read_route(rq_code: str):
    def _read():
        rq = request_service.mark_read(rq_code, g.actor)
        return {"rq_code": rq.rq_code, "read_by": dict(rq.read_by or {})}

    return _run("read", f"requests/{rq_code}", _read)
