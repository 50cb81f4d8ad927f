"""
Schedule anchors: the rule a schedule item's date is derived from.

An anchor is a tagged variant, one frozen dataclass per anchor type:

    FixedDate(date)               a literal calendar date
    ScheduleItemRef(item_id)      another item in the same template/activity
    ProjectMilestoneRef(name)     a named milestone of the owning project
    Completion()                  the owning instance's completion date

Rows store the variant in four columns (anchor_type + one payload column).
``anchor_from_columns`` and ``anchor_columns`` convert between the two so a
row can never carry a payload column that does not belong to its type: every
write goes through ``anchor_columns``, which NULLs the other three.

``anchor_from_payload`` is the single write-time validator used by both the
template editor and the project item editor.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum

from sqts.core.exceptions import ValidationError
from sqts.utils.helpers import parse_date


class AnchorType(str, Enum):
    FIXED_DATE = "FIXED_DATE"
    SCHEDULE_ITEM = "SCHEDULE_ITEM"
    PROJECT_MILESTONE = "PROJECT_MILESTONE"
    COMPLETION = "COMPLETION"


class ItemKind(str, Enum):
    MILESTONE = "MILESTONE"
    TASK = "TASK"


ANCHOR_TYPES = {a.value for a in AnchorType}
ITEM_KINDS = {k.value for k in ItemKind}


@dataclass(frozen=True)
class FixedDate:
    date: date
    anchor_type = AnchorType.FIXED_DATE


@dataclass(frozen=True)
class ScheduleItemRef:
    item_id: int
    anchor_type = AnchorType.SCHEDULE_ITEM


@dataclass(frozen=True)
class ProjectMilestoneRef:
    name: str
    anchor_type = AnchorType.PROJECT_MILESTONE


@dataclass(frozen=True)
class Completion:
    anchor_type = AnchorType.COMPLETION


Anchor = FixedDate | ScheduleItemRef | ProjectMilestoneRef | Completion

# payload column owned by each anchor type
_PAYLOAD_COLUMN = {
    AnchorType.FIXED_DATE: "fixed_date",
    AnchorType.SCHEDULE_ITEM: "anchor_ref_id",
    AnchorType.PROJECT_MILESTONE: "anchor_milestone_name",
    AnchorType.COMPLETION: None,
}
_ANCHOR_COLUMNS = ("fixed_date", "anchor_ref_id", "anchor_milestone_name")


# ── Row <-> variant ──────────────────────────────────────────────────────────


def anchor_from_columns(anchor_type, anchor_ref_id=None, anchor_milestone_name=None,
                        fixed_date=None) -> Anchor:
    """Build the variant from stored columns.

    Rows are only ever written through ``anchor_columns`` so a missing payload
    here means the row predates validation; it is reported, not guessed.
    """
    kind = AnchorType(anchor_type)
    if kind is AnchorType.FIXED_DATE:
        if fixed_date is None:
            raise ValidationError("FIXED_DATE anchor has no fixed_date")
        return FixedDate(fixed_date)
    if kind is AnchorType.SCHEDULE_ITEM:
        if anchor_ref_id is None:
            raise ValidationError("SCHEDULE_ITEM anchor has no anchor_ref_id")
        return ScheduleItemRef(anchor_ref_id)
    if kind is AnchorType.PROJECT_MILESTONE:
        if not anchor_milestone_name:
            raise ValidationError("PROJECT_MILESTONE anchor has no anchor_milestone_name")
        return ProjectMilestoneRef(anchor_milestone_name)
    return Completion()


def anchor_columns(anchor: Anchor) -> dict:
    """Column values for ``anchor``; the non-owned payload columns are None."""
    cols = {
        "anchor_type": anchor.anchor_type.value,
        "fixed_date": None,
        "anchor_ref_id": None,
        "anchor_milestone_name": None,
    }
    if isinstance(anchor, FixedDate):
        cols["fixed_date"] = anchor.date
    elif isinstance(anchor, ScheduleItemRef):
        cols["anchor_ref_id"] = anchor.item_id
    elif isinstance(anchor, ProjectMilestoneRef):
        cols["anchor_milestone_name"] = anchor.name
    return cols


def anchor_to_dict(anchor: Anchor) -> dict:
    cols = anchor_columns(anchor)
    cols["fixed_date"] = cols["fixed_date"].isoformat() if cols["fixed_date"] else None
    return cols


# ── Write-time validation ────────────────────────────────────────────────────


def anchor_from_payload(data: dict, current: Anchor | None = None) -> Anchor:
    """Validate the anchor part of a create/update payload.

    ``current`` is the row's existing anchor on update. When the payload keeps
    the anchor type, omitted payload columns fall back to the current values;
    when it switches type, the old payload is discarded.

    Raises:
        ValidationError: unknown anchor type, missing payload for the type, or
            a payload column that belongs to a different anchor type.
    """
    raw_type = data.get("anchor_type")
    if raw_type is None:
        if current is None:
            raise ValidationError("anchor_type is required", details={"anchor_type": "required"})
        kind = current.anchor_type
    else:
        if raw_type not in ANCHOR_TYPES:
            raise ValidationError(
                f"anchor_type must be one of: {', '.join(sorted(ANCHOR_TYPES))}",
                details={"anchor_type": str(raw_type)},
            )
        kind = AnchorType(raw_type)

    inherited = {}
    if current is not None and current.anchor_type is kind:
        inherited = anchor_columns(current)

    owned = _PAYLOAD_COLUMN[kind]
    stray = [c for c in _ANCHOR_COLUMNS if c != owned and data.get(c) not in (None, "")]
    if stray:
        raise ValidationError(
            f"{kind.value} anchor does not accept {', '.join(stray)}",
            details={c: "not allowed for " + kind.value for c in stray},
        )

    if kind is AnchorType.COMPLETION:
        return Completion()

    value = data.get(owned) if owned in data else inherited.get(owned)
    if value in (None, ""):
        raise ValidationError(
            f"{owned} is required for {kind.value} anchors", details={owned: "required"}
        )

    if kind is AnchorType.FIXED_DATE:
        return FixedDate(parse_date(value, owned))
    if kind is AnchorType.SCHEDULE_ITEM:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError("anchor_ref_id must be an integer id", details={owned: repr(value)})
        return ScheduleItemRef(value)
    name = str(value).strip()
    if not name:
        raise ValidationError("anchor_milestone_name must not be blank", details={owned: "required"})
    return ProjectMilestoneRef(name)


def validate_kind(value) -> str:
    if value not in ITEM_KINDS:
        raise ValidationError(
            f"kind must be one of: {', '.join(sorted(ITEM_KINDS))}", details={"kind": str(value)}
        )
    return value


def validate_offset(value) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("offset_days must be an integer", details={"offset_days": repr(value)})
    return value


# ── Cycle detection ──────────────────────────────────────────────────────────


def find_anchor_cycle(refs: dict[int, int | None], start_id: int) -> list[int] | None:
    """Return the cycle through ``start_id`` in the SCHEDULE_ITEM graph, if any.

    ``refs`` maps item id → referenced item id (None for non-SCHEDULE_ITEM
    anchors) and already contains the proposed edit. Each item has at most one
    outgoing edge, so walking the chain is enough. Pre-existing cycles that do
    not pass through ``start_id`` stop the walk without being reported here.
    """
    path = [start_id]
    seen = {start_id}
    current = refs.get(start_id)
    while current is not None:
        if current == start_id:
            return path
        if current in seen:
            return None
        seen.add(current)
        path.append(current)
        current = refs.get(current)
    return None
