"""Tests for the pure requisition approval rules."""

import pytest

from shopfloor.database.models import ApprovalStatus, RequisitionStatus
from shopfloor.engines.requisitions import (
    aggregate_requisition_status,
    classify_item_approval,
    validate_approval,
)
from shopfloor.errors import ValidationError

A = ApprovalStatus.APPROVED
R = ApprovalStatus.REJECTED
P = ApprovalStatus.PARTIALLY_APPROVED
N = ApprovalStatus.PENDING


class TestValidateApproval:
    def test_valid_split(self):
        validate_approval(5, 3, 2)

    def test_exceeds_requested(self):
        with pytest.raises(ValidationError) as exc:
            validate_approval(5, 4, 2, line_id=7)
        assert exc.value.limit == 5
        assert exc.value.entity_id == 7

    def test_negative(self):
        with pytest.raises(ValidationError) as exc:
            validate_approval(5, -1, 0)
        assert exc.value.field == "approved_quantity"

    def test_fractional(self):
        with pytest.raises(ValidationError):
            validate_approval(5, 0, 1.5)


class TestClassifyItemApproval:
    @pytest.mark.parametrize("requested,approved,rejected,expected", [
        (5, 5, 0, A),
        (5, 0, 5, R),
        (5, 3, 2, P),
        (5, 0, 0, N),
        (5, 0, 2, P),
    ])
    def test_outcomes(self, requested, approved, rejected, expected):
        assert classify_item_approval(requested, approved, rejected) is expected

    def test_short_approval_without_rejection_is_partial(self):
        assert classify_item_approval(5, 3, 0) is P


class TestAggregateRequisitionStatus:
    def test_all_approved(self):
        assert aggregate_requisition_status([A, A]) is RequisitionStatus.APPROVED

    def test_all_rejected(self):
        assert aggregate_requisition_status([R, R]) is RequisitionStatus.REJECTED

    @pytest.mark.parametrize("statuses", [[A, P], [P, A], [P, R], [R, P]])
    def test_any_partial(self, statuses):
        assert aggregate_requisition_status(statuses) is (
            RequisitionStatus.PARTIALLY_APPROVED
        )

    def test_mixed_approved_and_rejected_stays_pending(self):
        assert aggregate_requisition_status([A, R]) is RequisitionStatus.PENDING

    def test_undecided(self):
        assert aggregate_requisition_status([N]) is RequisitionStatus.PENDING
        assert aggregate_requisition_status([]) is RequisitionStatus.PENDING

    def test_accepts_strings(self):
        assert aggregate_requisition_status(["approved", "approved"]) is (
            RequisitionStatus.APPROVED
        )
