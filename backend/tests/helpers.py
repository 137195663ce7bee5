"""Payload builders shared by the request tests."""


def make_payload(lines, *, project_id="P-1", engineer_id="E-1", urgent=False, note="", **extra):
    payload = {
        "project_id": project_id,
        "engineer_id": engineer_id,
        "urgent": urgent,
        "note": note,
        "lines": lines,
    }
    payload.update(extra)
    return payload


def line(item_id, qty, unit, key=None):
    data = {"item_id": item_id, "qty": qty, "unit": unit}
    if key:
        data["key"] = key
    return data


def headers(actor_or_uid) -> dict:
    uid = actor_or_uid if isinstance(actor_or_uid, str) else actor_or_uid.uid
    return {"X-User-Id": uid}
