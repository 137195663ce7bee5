# backend/ims/routes/catalog.py
"""
Read-only catalog routes used by the request editor.

- GET /api/items              items (optional ?dept= and ?q=)
- GET /api/items/:code        one item with stock per unit
- GET /api/projects           active projects (?all=1 for inactive too)
- GET /api/engineers          active engineers (?all=1 for inactive too)
- GET /api/units              unit-of-measure options
"""
from flask import Blueprint, request, g

from ..extensions import db
from ..models import Item
from ..decorators import require_actor
from ..services import catalog_service


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


@catalog_bp.get("/items")
@require_actor
def list_items_route():
    items = catalog_service.list_items(
        g.actor,
        dept=request.args.get("dept") or None,
        search=request.args.get("q") or None,
    )
    return {"items": [catalog_service.item_view(item, g.actor) for item in items]}


@catalog_bp.get("/items/<item_code>")
@require_actor
def get_item_route(item_code: str):
    item = db.session.get(Item, item_code)
    if item is None:
        return {"error": "Item not found"}, 404
    return {"item": catalog_service.item_view(item, g.actor)}


@catalog_bp.get("/projects")
@require_actor
def list_projects_route():
    include_inactive = request.args.get("all") == "1"
    projects = catalog_service.list_projects(include_inactive=include_inactive)
    return {"projects": [p.to_dict() for p in projects]}


@catalog_bp.get("/engineers")
@require_actor
def list_engineers_route():
    include_inactive = request.args.get("all") == "1"
    engineers = catalog_service.list_engineers(include_inactive=include_inactive)
    return {"engineers": [e.to_dict() for e in engineers]}


@catalog_bp.get("/units")
@require_actor
def list_units_route():
    return {"units": catalog_service.unit_options()}
