"""
Lifecycle derivation tests.

Verifies:
- Removal overrides any stored line status
- Derivation priority (CANCELED, REJECTED, FULLY_APPROVED, PARTIALLY_APPROVED, SUBMITTED, fallback)
- Derivation does not depend on line order
- Store transition edges
"""

import itertools

import pytest

from ims.schemas import (
    ActiveLine,
    LineStatus,
    RemovedLine,
    RequestLine,
    RequestStatus,
    parse_lines,
)
from ims.services.lifecycle_service import (
    LifecycleError,
    can_store_transition,
    derive_lifecycle_status,
    is_cancelable,
    normalize_line_status,
    require_store_transition,
)


def _line(status="PENDING_OWNER", deleted=False, item="HSE-001"):
    return {"item_id": item, "owner_dept_id": "HSE", "unit": "PCS", "qty": 1, "status": status, "deleted": deleted}


# =============================================================================
# NORMALIZER
# =============================================================================


class TestNormalizeLineStatus:

    @pytest.mark.parametrize("status", ["OWNER_APPROVED", "OWNER_REJECTED", "PENDING_OWNER", "", None, "bogus"])
    def test_deleted_overrides_status(self, status):
        assert normalize_line_status(_line(status=status, deleted=True)) is LineStatus.DELETED

    def test_uppercases(self):
        assert normalize_line_status(_line(status="owner_approved")) is LineStatus.OWNER_APPROVED

    def test_missing_or_unknown_is_pending(self):
        assert normalize_line_status({"item_id": "X"}) is LineStatus.PENDING_OWNER
        assert normalize_line_status(_line(status="WAITING")) is LineStatus.PENDING_OWNER

    def test_deleted_status_without_flag_is_pending(self):
        assert normalize_line_status(_line(status="DELETED")) is LineStatus.PENDING_OWNER

    def test_typed_lines(self):
        active = RequestLine(key="k", item_id="X", owner_dept_id="HSE", unit="PCS", qty=1,
                             state=ActiveLine(LineStatus.OWNER_REJECTED))
        removed = RequestLine(key="k", item_id="X", owner_dept_id="HSE", unit="PCS", qty=1, state=RemovedLine())
        assert normalize_line_status(active) is LineStatus.OWNER_REJECTED
        assert normalize_line_status(removed) is LineStatus.DELETED

    def test_store_edge_reads_deleted_as_removed(self):
        lines = parse_lines([_line(status="OWNER_APPROVED", deleted=True)])
        assert lines[0].deleted
        assert normalize_line_status(lines[0]) is LineStatus.DELETED


# =============================================================================
# DERIVATION
# =============================================================================


class TestDeriveLifecycleStatus:

    def test_no_lines_is_canceled(self):
        assert derive_lifecycle_status([]) is RequestStatus.CANCELED

    def test_all_deleted_is_canceled(self):
        lines = [_line("OWNER_APPROVED", deleted=True), _line("PENDING_OWNER", deleted=True)]
        assert derive_lifecycle_status(lines, fallback=RequestStatus.FULLY_APPROVED) is RequestStatus.CANCELED

    def test_all_rejected(self):
        lines = [_line("OWNER_REJECTED") for _ in range(3)]
        assert derive_lifecycle_status(lines) is RequestStatus.REJECTED

    def test_rejected_ignores_deleted_lines(self):
        lines = [_line("OWNER_REJECTED"), _line("OWNER_APPROVED", deleted=True)]
        assert derive_lifecycle_status(lines) is RequestStatus.REJECTED

    def test_fully_approved(self):
        lines = [_line("OWNER_APPROVED"), _line("OWNER_APPROVED")]
        assert derive_lifecycle_status(lines) is RequestStatus.FULLY_APPROVED

    def test_approved_plus_rejected_is_fully_approved(self):
        lines = [_line("OWNER_APPROVED"), _line("OWNER_REJECTED")]
        assert derive_lifecycle_status(lines) is RequestStatus.FULLY_APPROVED

    def test_mixed_is_partially_approved(self):
        lines = [_line("OWNER_APPROVED"), _line("PENDING_OWNER"), _line("OWNER_REJECTED")]
        assert derive_lifecycle_status(lines) is RequestStatus.PARTIALLY_APPROVED

    def test_pending_is_submitted(self):
        lines = [_line("PENDING_OWNER"), _line("OWNER_REJECTED")]
        assert derive_lifecycle_status(lines) is RequestStatus.SUBMITTED

    def test_unknown_status_counts_as_pending(self):
        assert derive_lifecycle_status([_line("???")]) is RequestStatus.SUBMITTED

    def test_order_independent(self):
        lines = [
            _line("OWNER_APPROVED"),
            _line("PENDING_OWNER"),
            _line("OWNER_REJECTED"),
            _line("OWNER_APPROVED", deleted=True),
        ]
        results = {derive_lifecycle_status(list(perm)) for perm in itertools.permutations(lines)}
        assert results == {RequestStatus.PARTIALLY_APPROVED}

    def test_accepts_typed_lines(self):
        lines = parse_lines([_line("OWNER_APPROVED"), _line("OWNER_APPROVED", deleted=True)])
        assert derive_lifecycle_status(lines) is RequestStatus.FULLY_APPROVED


# =============================================================================
# TRANSITIONS
# =============================================================================


class TestStoreTransitions:

    @pytest.mark.parametrize("src,dst", [
        (RequestStatus.FULLY_APPROVED, RequestStatus.STORE_PREPARING),
        (RequestStatus.STORE_PREPARING, RequestStatus.FULLY_APPROVED),
        (RequestStatus.STORE_PREPARING, RequestStatus.READY),
        (RequestStatus.READY, RequestStatus.CLOSED),
    ])
    def test_allowed_edges(self, src, dst):
        assert can_store_transition(src, dst)
        require_store_transition(src, dst)

    @pytest.mark.parametrize("src,dst", [
        (RequestStatus.SUBMITTED, RequestStatus.STORE_PREPARING),
        (RequestStatus.FULLY_APPROVED, RequestStatus.READY),
        (RequestStatus.READY, RequestStatus.STORE_PREPARING),
        (RequestStatus.CLOSED, RequestStatus.READY),
    ])
    def test_rejected_edges(self, src, dst):
        assert not can_store_transition(src, dst)
        with pytest.raises(LifecycleError):
            require_store_transition(src, dst)

    def test_cancelable(self):
        assert is_cancelable(RequestStatus.DRAFT)
        assert is_cancelable(RequestStatus.READY)
        assert not is_cancelable(RequestStatus.CLOSED)
        assert not is_cancelable(RequestStatus.CANCELED)
