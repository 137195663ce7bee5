# Overview: Read-only catalog queries (items with unit conversion, projects, engineers).

from __future__ import annotations

from ..extensions import db
from ..models import Engineer, Item, Project
from .permission_service import ActorContext
from .units import UNIT_OPTIONS, UnitTable, normalize_unit_code, unit_label


def item_view(item: Item, actor: ActorContext) -> dict:
    """
    Item payload for one viewer.

    Stock is only shown to store team for the owning department; it is then
    given in the base unit and in every alternate unit the item lists.
    """
    data = item.to_dict()
    data["display_name"] = item.display_name
    data["unit_label"] = unit_label(item.unit)
    if not actor.store_team_can_see_dept(item.owner_dept_id):
        data["qty"] = None
        data["stock_by_unit"] = {}
        return data

    table = UnitTable.from_raw(item.units)
    base_qty = float(item.qty or 0)
    stock = {normalize_unit_code(item.unit): base_qty}
    for code in table.codes():
        stock[code] = table.from_base(base_qty, code)
    data["stock_by_unit"] = stock
    return data


def list_items(actor: ActorContext, *, dept: str | None = None, search: str | None = None) -> list[Item]:
    query = db.session.query(Item)
    if dept:
        query = query.filter(Item.owner_dept_id == dept)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(
            db.or_(Item.item_code.ilike(like), Item.name_en.ilike(like), Item.name_ar.ilike(like))
        )
    return query.order_by(Item.owner_dept_id, Item.item_code).all()


def list_projects(*, include_inactive: bool = False) -> list[Project]:
    query = db.session.query(Project)
    if not include_inactive:
        query = query.filter(Project.active.is_(True))
    return query.order_by(Project.id).all()


def list_engineers(*, include_inactive: bool = False) -> list[Engineer]:
    query = db.session.query(Engineer)
    if not include_inactive:
        query = query.filter(Engineer.active.is_(True))
    return query.order_by(Engineer.id).all()


def unit_options() -> list[dict]:
    return [{"code": opt.code, "label": opt.label, "display": unit_label(opt.code)} for opt in UNIT_OPTIONS]
