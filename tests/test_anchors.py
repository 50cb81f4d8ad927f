"""
Tests for the anchor variant: column mapping, payload validation and
write-time cycle detection.
"""

from datetime import date

import pytest

from sqts.core.exceptions import ValidationError
from sqts.services.anchors import (
    AnchorType,
    Completion,
    FixedDate,
    ProjectMilestoneRef,
    ScheduleItemRef,
    anchor_columns,
    anchor_from_columns,
    anchor_from_payload,
    find_anchor_cycle,
    validate_kind,
    validate_offset,
)


class TestColumns:

    def test_columns_clear_other_payloads(self):
        cols = anchor_columns(ProjectMilestoneRef("SOP"))
        assert cols == {
            "anchor_type": "PROJECT_MILESTONE",
            "fixed_date": None,
            "anchor_ref_id": None,
            "anchor_milestone_name": "SOP",
        }

    def test_from_columns_builds_variant(self):
        assert anchor_from_columns("FIXED_DATE", fixed_date=date(2024, 3, 1)) == FixedDate(date(2024, 3, 1))
        assert anchor_from_columns("SCHEDULE_ITEM", anchor_ref_id=7) == ScheduleItemRef(7)
        assert anchor_from_columns("COMPLETION") == Completion()

    def test_from_columns_missing_payload_raises(self):
        with pytest.raises(ValidationError):
            anchor_from_columns("SCHEDULE_ITEM")

    def test_anchor_type_attribute(self):
        assert FixedDate(date(2024, 1, 1)).anchor_type is AnchorType.FIXED_DATE
        assert Completion().anchor_type is AnchorType.COMPLETION


class TestPayload:

    def test_fixed_date_parsed(self):
        anchor = anchor_from_payload({"anchor_type": "FIXED_DATE", "fixed_date": "2024-01-10"})
        assert anchor == FixedDate(date(2024, 1, 10))

    def test_missing_anchor_type_on_create(self):
        with pytest.raises(ValidationError) as exc:
            anchor_from_payload({"fixed_date": "2024-01-10"})
        assert exc.value.details == {"anchor_type": "required"}

    def test_unknown_anchor_type(self):
        with pytest.raises(ValidationError):
            anchor_from_payload({"anchor_type": "WHENEVER"})

    def test_payload_of_other_type_rejected(self):
        with pytest.raises(ValidationError) as exc:
            anchor_from_payload({
                "anchor_type": "FIXED_DATE",
                "fixed_date": "2024-01-10",
                "anchor_milestone_name": "SOP",
            })
        assert "anchor_milestone_name" in exc.value.details

    def test_required_payload_missing(self):
        with pytest.raises(ValidationError) as exc:
            anchor_from_payload({"anchor_type": "SCHEDULE_ITEM"})
        assert exc.value.details == {"anchor_ref_id": "required"}

    def test_ref_must_be_integer(self):
        with pytest.raises(ValidationError):
            anchor_from_payload({"anchor_type": "SCHEDULE_ITEM", "anchor_ref_id": "3"})

    def test_bad_date(self):
        with pytest.raises(ValidationError):
            anchor_from_payload({"anchor_type": "FIXED_DATE", "fixed_date": "next week"})

    def test_completion_takes_no_payload(self):
        assert anchor_from_payload({"anchor_type": "COMPLETION"}) == Completion()
        with pytest.raises(ValidationError):
            anchor_from_payload({"anchor_type": "COMPLETION", "anchor_ref_id": 4})

    def test_update_keeps_current_payload_for_same_type(self):
        current = ProjectMilestoneRef("SOP")
        assert anchor_from_payload({"anchor_type": "PROJECT_MILESTONE"}, current) == current
        assert anchor_from_payload({}, current) == current

    def test_update_switching_type_needs_new_payload(self):
        with pytest.raises(ValidationError):
            anchor_from_payload({"anchor_type": "FIXED_DATE"}, ProjectMilestoneRef("SOP"))

    def test_kind_and_offset(self):
        assert validate_kind("MILESTONE") == "MILESTONE"
        with pytest.raises(ValidationError):
            validate_kind("EPIC")
        assert validate_offset(None) == 0
        assert validate_offset(-3) == -3
        with pytest.raises(ValidationError):
            validate_offset(True)


class TestCycleDetection:

    def test_no_cycle(self):
        assert find_anchor_cycle({1: None, 2: 1, 3: 2}, 3) is None

    def test_two_node_cycle(self):
        assert find_anchor_cycle({1: 2, 2: 1}, 1) == [1, 2]

    def test_self_reference(self):
        assert find_anchor_cycle({1: 1}, 1) == [1]

    def test_existing_cycle_elsewhere_not_reported(self):
        # 3 -> 1 -> 2 -> 1 never returns to 3
        assert find_anchor_cycle({1: 2, 2: 1, 3: 1}, 3) is None
