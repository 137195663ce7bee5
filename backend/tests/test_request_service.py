"""
Request editor tests.

Verifies:
- Request creation: code minting, DRAFT vs SUBMITTED, inventory on submit
- Save path: line merge, soft delete in DRAFT, re-approval after an edit
- Note policy: full rewrite vs append-only
- Line decisions, removal and restore, with status re-derivation
- Explicit cancel, visibility, store view filter and read markers
"""

import re
from datetime import date

import pytest

from ims.extensions import db
from ims.models import MaterialRequest
from ims.services.document_service import dept_code, format_rq_code
from ims.services.inventory_service import InventoryViolationError
from ims.services.permission_service import PermissionDeniedError
from ims.services.request_service import (
    approve_line,
    cancel_request,
    create_request,
    get_request,
    list_visible_requests,
    mark_read,
    merge_appended_note,
    reject_line,
    remove_line,
    restore_line,
    save_request,
    unapprove_line,
)
from ims.services.transition_service import start_preparing
from ims.validation import ValidationError
from helpers import line, make_payload


def _lines_by_key(rq):
    return {raw["key"]: raw for raw in rq.lines}


@pytest.fixture
def submitted(db_session, catalog, requester, settings):
    """SUBMITTED request from the TRP requester: L1 = 2 PCS HSE-001, L2 = 5 L TRP-001."""
    def _build(lines=None, note="Base", mode="SUBMITTED"):
        lines = lines or [line("HSE-001", 2, "PCS", key="L1"), line("TRP-001", 5, "L", key="L2")]
        return create_request(requester, make_payload(lines, note=note), mode, settings)

    return _build


# =============================================================================
# CREATE
# =============================================================================


class TestCreate:

    def test_submitted_request(self, submitted, requester):
        rq = submitted()

        assert re.match(r"^TRP-\d{4}001$", rq.rq_code)
        assert rq.status == "SUBMITTED"
        assert rq.from_dept == "TRP"
        assert rq.created_by_uid == requester.uid
        assert rq.line_dept_ids == ["HSE", "TRP"]
        assert requester.uid in rq.read_by
        assert rq.updated_at_ms > 0

        entry = rq.activity_log[0]
        assert entry["type"] == "request_created"
        assert "Initial status: SUBMITTED" in entry["details"]
        assert "Project: Northern Depot" in entry["details"]
        assert "Engineer: Omar Haddad" in entry["details"]
        assert {raw["status"] for raw in rq.lines} == {"PENDING_OWNER"}

    def test_codes_count_up(self, submitted):
        first = submitted()
        second = submitted()
        assert first.rq_code[:-3] == second.rq_code[:-3]
        assert second.rq_code.endswith("002")

    def test_draft(self, submitted):
        assert submitted(mode="DRAFT").status == "DRAFT"

    def test_store_officer_cannot_create(self, db_session, catalog, store_keeper, settings):
        with pytest.raises(PermissionDeniedError):
            create_request(store_keeper, make_payload([line("HSE-001", 1, "PCS")]), "SUBMITTED", settings)

    @pytest.mark.parametrize("payload", [
        make_payload([line("HSE-001", 1, "PCS")], project_id=""),
        make_payload([line("HSE-001", 1, "PCS")], engineer_id=""),
        make_payload([]),
    ])
    def test_header_required(self, db_session, catalog, requester, settings, payload):
        with pytest.raises(ValidationError) as exc:
            create_request(requester, payload, "SUBMITTED", settings)
        assert str(exc.value) == "Please choose a project and engineer and add at least one item"

    def test_duplicate_item(self, db_session, catalog, requester, settings):
        payload = make_payload([line("HSE-001", 1, "PCS"), line("HSE-001", 2, "PCS")])
        with pytest.raises(ValidationError):
            create_request(requester, payload, "SUBMITTED", settings)

    def test_unknown_item_and_unit(self, db_session, catalog, requester, settings):
        with pytest.raises(ValidationError):
            create_request(requester, make_payload([line("NOPE-1", 1, "PCS")]), "SUBMITTED", settings)
        with pytest.raises(ValidationError):
            create_request(requester, make_payload([line("HSE-001", 1, "KG")]), "SUBMITTED", settings)

    def test_inventory_checked_on_submit_only(self, db_session, catalog, hse_store_manager, settings):
        payload = make_payload([line("HSE-001", 10, "PCS")])
        with pytest.raises(InventoryViolationError):
            create_request(hse_store_manager, payload, "SUBMITTED", settings)
        assert db.session.query(MaterialRequest).count() == 0

        rq = create_request(hse_store_manager, payload, "DRAFT", settings)
        assert rq.status == "DRAFT"

    def test_request_codes(self):
        assert dept_code("Store", {"Store": "STR"}) == "STR"
        assert dept_code("Transport") == "TRA"
        assert dept_code("") == "GEN"


# =============================================================================
# SAVE
# =============================================================================


class TestSave:

    def test_first_submit(self, submitted, requester, settings):
        rq = submitted(mode="DRAFT")
        payload = make_payload([line("HSE-001", 2, "PCS", key="L1"), line("TRP-001", 5, "L", key="L2")], note="Base")
        rq = save_request(rq.rq_code, requester, payload, "SUBMITTED", rq.updated_at_ms, settings)
        assert rq.status == "SUBMITTED"
        assert "Status: DRAFT -> SUBMITTED" in rq.activity_log[0]["details"]

    def test_draft_omission_soft_deletes(self, submitted, requester, settings):
        rq = submitted(mode="DRAFT")
        rq = save_request(
            rq.rq_code, requester,
            make_payload([line("TRP-001", 5, "L", key="L2")], note="Base"),
            "DRAFT", rq.updated_at_ms, settings,
        )
        lines = _lines_by_key(rq)
        assert lines["L1"]["deleted"] is True
        assert lines["L1"]["removed_by"]["uid"] == requester.uid
        assert lines["L2"]["deleted"] is False
        assert rq.line_dept_ids == ["TRP"]
        assert "Items updated" in rq.activity_log[0]["details"]

    def test_removed_item_must_be_restored(self, submitted, requester, settings):
        rq = submitted(mode="DRAFT")
        rq = save_request(
            rq.rq_code, requester,
            make_payload([line("TRP-001", 5, "L", key="L2")], note="Base"),
            "DRAFT", rq.updated_at_ms, settings,
        )
        with pytest.raises(ValidationError):
            save_request(
                rq.rq_code, requester,
                make_payload([line("TRP-001", 5, "L", key="L2"), line("HSE-001", 1, "PCS")], note="Base"),
                "DRAFT", rq.updated_at_ms, settings,
            )

    def test_omission_after_submit_is_refused(self, submitted, requester, settings):
        rq = submitted()
        with pytest.raises(ValidationError):
            save_request(
                rq.rq_code, requester,
                make_payload([line("TRP-001", 5, "L", key="L2")], note="Base"),
                "SUBMITTED", rq.updated_at_ms, settings,
            )

    def test_edit_resets_approval(self, submitted, requester, hse_manager, settings):
        rq = submitted(lines=[line("HSE-001", 2, "PCS", key="L1")])
        rq = approve_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)
        assert rq.status == "FULLY_APPROVED"

        rq = save_request(
            rq.rq_code, requester,
            make_payload([line("HSE-001", 3, "PCS", key="L1")], note="Base"),
            "SUBMITTED", rq.updated_at_ms, settings,
        )
        edited = _lines_by_key(rq)["L1"]
        assert edited["qty"] == 3
        assert edited["status"] == "PENDING_OWNER"
        assert edited["owner_approved_by"] is None
        assert rq.status == "SUBMITTED"

    def test_unchanged_line_keeps_decision(self, submitted, requester, hse_manager, settings):
        rq = submitted(lines=[line("HSE-001", 2, "PCS", key="L1")])
        rq = approve_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)
        rq = save_request(
            rq.rq_code, requester,
            make_payload([line("HSE-001", 2, "PCS", key="L1")], note="Base and more", urgent=True),
            "SUBMITTED", rq.updated_at_ms, settings,
        )
        assert _lines_by_key(rq)["L1"]["status"] == "OWNER_APPROVED"
        assert rq.status == "FULLY_APPROVED"
        assert rq.urgent is True

    def test_cannot_add_after_submit(self, submitted, requester, settings):
        rq = submitted(lines=[line("HSE-001", 2, "PCS", key="L1")])
        with pytest.raises(PermissionDeniedError):
            save_request(
                rq.rq_code, requester,
                make_payload([line("HSE-001", 2, "PCS", key="L1"), line("TRP-001", 1, "L")], note="Base"),
                "SUBMITTED", rq.updated_at_ms, settings,
            )

    def test_draft_mode_only_for_drafts(self, submitted, requester, settings):
        rq = submitted()
        with pytest.raises(ValidationError):
            save_request(
                rq.rq_code, requester,
                make_payload([line("HSE-001", 2, "PCS", key="L1"), line("TRP-001", 5, "L", key="L2")]),
                "DRAFT", rq.updated_at_ms, settings,
            )

    def test_outsider_cannot_save(self, submitted, outsider, settings):
        rq = submitted()
        with pytest.raises(PermissionDeniedError):
            save_request(
                rq.rq_code, outsider,
                make_payload([line("HSE-001", 2, "PCS", key="L1"), line("TRP-001", 5, "L", key="L2")], note="Base"),
                "SUBMITTED", rq.updated_at_ms, settings,
            )

    def test_no_change_save_is_logged(self, submitted, requester, settings):
        rq = submitted()
        rq = save_request(
            rq.rq_code, requester,
            make_payload([line("HSE-001", 2, "PCS", key="L1"), line("TRP-001", 5, "L", key="L2")], note="Base"),
            "SUBMITTED", rq.updated_at_ms, settings,
        )
        assert rq.activity_log[0]["type"] == "request_saved"
        assert len(rq.activity_log) == 2


# =============================================================================
# NOTES
# =============================================================================


class TestNotes:

    SAME_LINES = [line("HSE-001", 2, "PCS", key="L1"), line("TRP-001", 5, "L", key="L2")]

    @pytest.mark.parametrize("base,value,expected", [
        ("", "anything", "anything"),
        ("Base", "Base more", "Base more"),
        ("Base", "Ba", "Base"),
        ("Base", "Xase more", "Base more"),
        ("Base", "Bxx", "Base"),
    ])
    def test_merge_appended_note(self, base, value, expected):
        assert merge_appended_note(base, value) == expected

    def test_owner_manager_appends(self, submitted, hse_manager, settings):
        rq = submitted()
        rq = save_request(
            rq.rq_code, hse_manager,
            make_payload(self.SAME_LINES, note="Base\nHSE: helmets ready Monday"),
            "SUBMITTED", rq.updated_at_ms, settings,
        )
        assert rq.note == "Base\nHSE: helmets ready Monday"
        assert rq.status == "SUBMITTED"
        assert "Note appended" in rq.activity_log[0]["details"]

    def test_owner_manager_cannot_rewrite(self, submitted, hse_manager, settings):
        rq = submitted()
        rq = save_request(
            rq.rq_code, hse_manager,
            make_payload(self.SAME_LINES, note="Rewritten text"),
            "SUBMITTED", rq.updated_at_ms, settings,
        )
        assert rq.note.startswith("Base")

    def test_owner_manager_cannot_change_header(self, submitted, hse_manager, settings):
        rq = submitted()
        with pytest.raises(PermissionDeniedError):
            save_request(
                rq.rq_code, hse_manager,
                make_payload(self.SAME_LINES, note="Base", project_id="P-2"),
                "SUBMITTED", rq.updated_at_ms, settings,
            )

    def test_requester_rewrites(self, submitted, requester, settings):
        rq = submitted()
        rq = save_request(
            rq.rq_code, requester,
            make_payload(self.SAME_LINES, note="Completely new"),
            "SUBMITTED", rq.updated_at_ms, settings,
        )
        assert rq.note == "Completely new"

    def test_store_team_appends(self, submitted, store_keeper, settings):
        rq = submitted(lines=[line("HSE-001", 20, "PCS", key="L1")])
        rq = save_request(
            rq.rq_code, store_keeper,
            make_payload([line("HSE-001", 20, "PCS", key="L1")], note="Base / store: partial stock"),
            "SUBMITTED", rq.updated_at_ms, settings,
        )
        assert rq.note == "Base / store: partial stock"
        assert rq.status == "SUBMITTED"

    def test_store_team_cannot_change_lines(self, submitted, store_keeper, settings):
        rq = submitted(lines=[line("HSE-001", 2, "PCS", key="L1")])
        with pytest.raises(PermissionDeniedError):
            save_request(
                rq.rq_code, store_keeper,
                make_payload([line("HSE-001", 1, "PCS", key="L1")], note="Base"),
                "SUBMITTED", rq.updated_at_ms, settings,
            )

    def test_store_team_cannot_append_after_cancel(self, submitted, requester, store_keeper, settings):
        rq = submitted(lines=[line("HSE-001", 2, "PCS", key="L1")])
        rq = cancel_request(rq.rq_code, requester, rq.updated_at_ms, settings)
        code, revision, log_size = rq.rq_code, rq.updated_at_ms, len(rq.activity_log)
        with pytest.raises(PermissionDeniedError):
            save_request(
                code, store_keeper,
                make_payload([line("HSE-001", 2, "PCS", key="L1")], note="Base + store edit"),
                "SUBMITTED", revision, settings,
            )

        db.session.expire_all()
        stored = db.session.get(MaterialRequest, code)
        assert stored.status == "CANCELED"
        assert stored.note == "Base"
        assert stored.updated_at_ms == revision
        assert len(stored.activity_log) == log_size


# =============================================================================
# LINE ACTIONS
# =============================================================================


class TestLineActions:

    def test_approve_then_partial_then_full(self, submitted, hse_manager, trp_manager, settings):
        rq = submitted()
        rq = approve_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)
        assert rq.status == "PARTIALLY_APPROVED"
        approved = _lines_by_key(rq)["L1"]
        assert approved["owner_approved_by"]["uid"] == hse_manager.uid
        assert rq.activity_log[0]["summary"] == "HSE Manager (HSE) approved Safety Helmet"

        rq = approve_line(rq.rq_code, "L2", trp_manager, rq.updated_at_ms, settings)
        assert rq.status == "FULLY_APPROVED"

    def test_only_owner_department_approves(self, submitted, trp_manager, settings):
        rq = submitted()
        with pytest.raises(PermissionDeniedError):
            approve_line(rq.rq_code, "L1", trp_manager, rq.updated_at_ms, settings)

    def test_no_approval_in_draft(self, submitted, hse_manager, settings):
        rq = submitted(mode="DRAFT")
        with pytest.raises(PermissionDeniedError):
            approve_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)

    def test_approval_checks_stock_for_store_officer(self, submitted, hse_store_manager, settings):
        rq = submitted(lines=[line("HSE-001", 10, "PCS", key="L1")])
        with pytest.raises(InventoryViolationError) as exc:
            approve_line(rq.rq_code, "L1", hse_store_manager, rq.updated_at_ms, settings)
        assert str(exc.value) == "Cannot approve Safety Helmet (HSE-001): 10 PCS requested but only 4 available."

    def test_unapprove(self, submitted, hse_manager, settings):
        rq = submitted(lines=[line("HSE-001", 2, "PCS", key="L1")])
        rq = approve_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)
        rq = unapprove_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)
        assert _lines_by_key(rq)["L1"]["status"] == "PENDING_OWNER"
        assert rq.status == "SUBMITTED"

    def test_reject_toggles(self, submitted, hse_manager, trp_manager, settings):
        rq = submitted()
        rq = approve_line(rq.rq_code, "L2", trp_manager, rq.updated_at_ms, settings)
        rq = reject_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)
        assert rq.status == "FULLY_APPROVED"
        assert _lines_by_key(rq)["L1"]["owner_rejected_by"]["uid"] == hse_manager.uid

        rq = reject_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)
        assert rq.status == "PARTIALLY_APPROVED"
        assert _lines_by_key(rq)["L1"]["status"] == "PENDING_OWNER"
        assert _lines_by_key(rq)["L1"]["owner_rejected_by"] is None

    def test_rejected_line_returns_to_pending_before_approval(self, submitted, hse_manager, settings):
        rq = submitted()
        rq = reject_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)
        with pytest.raises(ValidationError, match="Accept it back to pending"):
            approve_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)

        rq = reject_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)
        assert _lines_by_key(rq)["L1"]["status"] == "PENDING_OWNER"
        rq = approve_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)
        assert _lines_by_key(rq)["L1"]["status"] == "OWNER_APPROVED"

    def test_creator_manager_cannot_reject_own_lines(self, db_session, catalog, hse_store_manager, settings):
        payload = make_payload([line("HSE-001", 2, "PCS", key="L1")])
        rq = create_request(hse_store_manager, payload, "SUBMITTED", settings)
        with pytest.raises(PermissionDeniedError):
            reject_line(rq.rq_code, "L1", hse_store_manager, rq.updated_at_ms, settings)

        rq = remove_line(rq.rq_code, "L1", hse_store_manager, rq.updated_at_ms, settings)
        assert _lines_by_key(rq)["L1"]["deleted"] is True

    def test_all_rejected_locks_decisions(self, submitted, hse_manager, settings):
        rq = submitted(lines=[line("HSE-001", 2, "PCS", key="L1")])
        rq = reject_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)
        assert rq.status == "REJECTED"
        with pytest.raises(PermissionDeniedError):
            reject_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)

    def test_origin_manager_may_reject(self, submitted, trp_manager, settings):
        rq = submitted()
        rq = reject_line(rq.rq_code, "L1", trp_manager, rq.updated_at_ms, settings)
        assert _lines_by_key(rq)["L1"]["status"] == "OWNER_REJECTED"

    def test_remove_and_restore(self, submitted, requester, hse_manager, settings):
        rq = submitted()
        rq = approve_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)
        assert rq.status == "PARTIALLY_APPROVED"

        rq = remove_line(rq.rq_code, "L2", requester, rq.updated_at_ms, settings)
        assert _lines_by_key(rq)["L2"]["deleted"] is True
        assert rq.status == "FULLY_APPROVED"
        assert rq.line_dept_ids == ["HSE", "TRP"]

        rq = restore_line(rq.rq_code, "L2", requester, rq.updated_at_ms, settings)
        restored = _lines_by_key(rq)["L2"]
        assert restored["deleted"] is False
        assert restored["status"] == "PENDING_OWNER"
        assert rq.status == "PARTIALLY_APPROVED"

    def test_remove_and_restore_logged_under_actor_department(self, submitted, requester, settings):
        rq = submitted()
        rq = remove_line(rq.rq_code, "L1", requester, rq.updated_at_ms, settings)
        assert rq.activity_log[0]["summary"] == "Sara Ali (TRP) removed Safety Helmet"
        assert rq.activity_log[0]["actor"]["dept_id"] == "TRP"
        assert _lines_by_key(rq)["L1"]["removed_by"]["dept_id"] == "TRP"

        rq = restore_line(rq.rq_code, "L1", requester, rq.updated_at_ms, settings)
        assert rq.activity_log[0]["summary"] == "Sara Ali (TRP) restored Safety Helmet"

    def test_removing_every_line_cancels(self, submitted, requester, settings):
        rq = submitted(lines=[line("HSE-001", 2, "PCS", key="L1")])
        rq = remove_line(rq.rq_code, "L1", requester, rq.updated_at_ms, settings)
        assert rq.status == "CANCELED"
        assert rq.canceled_at_ms
        assert rq.canceled_by["uid"] == requester.uid

    def test_other_department_cannot_remove(self, submitted, hse_manager, settings):
        rq = submitted()
        with pytest.raises(PermissionDeniedError):
            remove_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)

    def test_unknown_line(self, submitted, hse_manager, settings):
        rq = submitted()
        with pytest.raises(ValidationError):
            approve_line(rq.rq_code, "L9", hse_manager, rq.updated_at_ms, settings)


# =============================================================================
# CANCEL
# =============================================================================


class TestCancel:

    def test_requester_cancels(self, submitted, requester, settings):
        rq = submitted()
        rq = cancel_request(rq.rq_code, requester, rq.updated_at_ms, settings)
        assert rq.status == "CANCELED"
        assert rq.canceled_by["uid"] == requester.uid
        entry = rq.activity_log[0]
        assert entry["type"] == "request_canceled"
        assert entry["details"] == "Status: SUBMITTED -> CANCELED"

    def test_outsider_cannot_cancel(self, submitted, outsider, settings):
        rq = submitted()
        with pytest.raises(PermissionDeniedError):
            cancel_request(rq.rq_code, outsider, rq.updated_at_ms, settings)

    def test_not_twice(self, submitted, requester, settings):
        rq = submitted()
        rq = cancel_request(rq.rq_code, requester, rq.updated_at_ms, settings)
        with pytest.raises(PermissionDeniedError):
            cancel_request(rq.rq_code, requester, rq.updated_at_ms, settings)


# =============================================================================
# READS
# =============================================================================


class TestVisibility:

    def test_list(self, submitted, requester, hse_manager, outsider, store_keeper, admin):
        rq = submitted()
        def codes(actor, **kwargs):
            return [r.rq_code for r in list_visible_requests(actor, **kwargs)]

        assert codes(requester) == [rq.rq_code]
        assert codes(hse_manager) == [rq.rq_code]
        assert codes(store_keeper) == [rq.rq_code]
        assert codes(admin) == [rq.rq_code]
        assert codes(outsider) == []
        assert codes(requester, status="draft") == []
        assert codes(requester, status="SUBMITTED") == [rq.rq_code]

    def test_unknown_status_filter(self, db_session, requester):
        with pytest.raises(ValidationError):
            list_visible_requests(requester, status="SHIPPED")

    def test_outsider_cannot_view(self, submitted, outsider):
        rq = submitted()
        with pytest.raises(PermissionDeniedError):
            get_request(rq.rq_code, outsider)

    def test_store_view_filter(self, submitted, requester, hse_manager, trp_manager, store_keeper, settings):
        rq = submitted()
        rq = approve_line(rq.rq_code, "L1", hse_manager, rq.updated_at_ms, settings)
        rq = reject_line(rq.rq_code, "L2", trp_manager, rq.updated_at_ms, settings)
        assert rq.status == "FULLY_APPROVED"
        rq = start_preparing(rq.rq_code, store_keeper, rq.updated_at_ms, settings)

        store_view = get_request(rq.rq_code, store_keeper)
        assert store_view["store_view_filter_active"] is True
        assert [raw["key"] for raw in store_view["lines"]] == ["L1"]
        assert store_view["permissions"]["can_run_store_transitions"] is True

        requester_view = get_request(rq.rq_code, requester)
        assert requester_view["store_view_filter_active"] is False
        assert [raw["key"] for raw in requester_view["lines"]] == ["L1", "L2"]
        assert requester_view["line_counts"]["OWNER_REJECTED"] == 1

    def test_mark_read_is_not_an_edit(self, submitted, hse_manager):
        rq = submitted()
        revision = rq.updated_at_ms
        rq = mark_read(rq.rq_code, hse_manager)
        assert hse_manager.uid in rq.read_by
        assert rq.updated_at_ms == revision
        assert len(rq.activity_log) == 1

    def test_format_rq_code(self):
        assert format_rq_code("TRP", date(2026, 3, 12), 7) == "TRP-0312007"
