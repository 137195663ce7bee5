from __future__ import annotations

from ..extensions import db


class Item(db.Model):
    """
    Catalog item with current stock.

    qty is stock in the item's base unit. The request core only ever writes
    qty back when a request is marked READY.

    units holds the item's alternate units as
    [{"code": "BOX", "label": "Box", "per_base": 0.1}, ...]
    (per_base = how many of that unit make one base unit).
    """
    __tablename__ = "items"
    __table_args__ = (
        db.Index("ix_items_owner_dept", "owner_dept_id"),
    )

    item_code = db.Column(db.String(64), primary_key=True)
    name_en = db.Column(db.String(255), nullable=True)
    name_ar = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)

    owner_dept_id = db.Column(db.String(64), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="PCS")
    allowed_units = db.Column(db.JSON, nullable=False, default=list)
    units = db.Column(db.JSON, nullable=False, default=list)

    qty = db.Column(db.Float, nullable=True, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def display_name(self) -> str:
        return self.name_en or self.name_ar or self.item_code

    def __repr__(self) -> str:
        return f"<Item {self.item_code} owner={self.owner_dept_id} qty={self.qty}>"

    def to_dict(self) -> dict:
        return {
            "item_code": self.item_code,
            "name_en": self.name_en,
            "name_ar": self.name_ar,
            "description": self.description,
            "owner_dept_id": self.owner_dept_id,
            "unit": self.unit,
            "allowed_units": list(self.allowed_units or []),
            "units": list(self.units or []),
            "qty": self.qty,
        }


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.String(64), primary_key=True)
    name_en = db.Column(db.String(255), nullable=True)
    name_ar = db.Column(db.String(255), nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)

    @property
    def display_name(self) -> str:
        return self.name_en or self.name_ar or self.id

    def to_dict(self) -> dict:
        return {"id": self.id, "name_en": self.name_en, "name_ar": self.name_ar, "active": self.active}


class Engineer(db.Model):
    __tablename__ = "engineers"

    id = db.Column(db.String(64), primary_key=True)
    name_en = db.Column(db.String(255), nullable=True)
    name_ar = db.Column(db.String(255), nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)

    @property
    def display_name(self) -> str:
        return self.name_en or self.name_ar or self.id

    def to_dict(self) -> dict:
        return {"id": self.id, "name_en": self.name_en, "name_ar": self.name_ar, "active": self.active}
