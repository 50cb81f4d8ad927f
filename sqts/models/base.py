"""
Anchored Item Mixin: shared columns for every row that carries an anchor.

Used by ScheduleItemDefinition (template scope) and ProjectScheduleItem
(project scope). Both store the anchor as ``anchor_type`` plus one payload
column; the other payload columns stay NULL.

Usage:
    class ScheduleItemDefinition(AnchoredItemMixin, db.Model):
        ...

    item.apply_anchor(ScheduleItemRef(other.id))
    item.anchor          # -> ScheduleItemRef(item_id=...)
"""

from sqts.models import db
from sqts.services.anchors import anchor_columns, anchor_from_columns, anchor_to_dict


class AnchoredItemMixin:
    """Kind, name, anchor columns, offset and ordering of a schedule item."""

    kind = db.Column(db.String(20), nullable=False, default="TASK",
                     comment="MILESTONE | TASK")
    name = db.Column(db.String(200), nullable=False)
    anchor_type = db.Column(db.String(30), nullable=False,
                            comment="FIXED_DATE | SCHEDULE_ITEM | PROJECT_MILESTONE | COMPLETION")
    anchor_ref_id = db.Column(db.Integer, nullable=True,
                              comment="Referenced item id in the same template/activity")
    anchor_milestone_name = db.Column(db.String(200), nullable=True)
    fixed_date = db.Column(db.Date, nullable=True)
    offset_days = db.Column(db.Integer, nullable=False, default=0)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    @property
    def anchor(self):
        return anchor_from_columns(
            self.anchor_type,
            anchor_ref_id=self.anchor_ref_id,
            anchor_milestone_name=self.anchor_milestone_name,
            fixed_date=self.fixed_date,
        )

    def apply_anchor(self, anchor):
        """Write ``anchor`` to the row, clearing payload columns it does not own."""
        for column, value in anchor_columns(anchor).items():
            setattr(self, column, value)

    def item_fields(self) -> dict:
        fields = {
            "kind": self.kind,
            "name": self.name,
            "offset_days": self.offset_days,
            "sort_order": self.sort_order,
        }
        fields.update(anchor_to_dict(self.anchor))
        return fields
