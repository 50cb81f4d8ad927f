"""
Template sync diff: pure comparison of a project activity's items against
the template's live definitions.

Matching:
  1. Lineage: an item whose ``definition_id`` names a live definition is
     matched to it.
  2. Position: leftover definitions (in sort_order, id order) each take the
     first leftover item (in sort_order, id order) with the same
     ``(kind, sort_order)``. Items copied before a restore lose their lineage
     because restore recreates definitions; this fallback picks them back up.

Classification:
    added      definition with no matching item
    changed    matched, and a compared field differs or lineage must be relinked
    unchanged  matched by lineage with identical fields
    orphaned   item with no matching definition (kept on apply)

SCHEDULE_ITEM anchors are compared by translating the item's reference
(a project item id) to the definition that item matched.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqts.services.anchors import AnchorType

COMPARED_FIELDS = (
    "name", "kind", "anchor_type", "anchor_ref",
    "anchor_milestone_name", "fixed_date", "offset_days", "sort_order",
)

MATCH_LINEAGE = "lineage"
MATCH_POSITION = "position"


@dataclass
class SyncChange:
    item: object
    definition: object
    match: str
    fields: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "item_id": self.item.id,
            "definition_id": self.definition.id,
            "name": self.definition.name,
            "match": self.match,
            "fields": self.fields,
        }


@dataclass
class SyncDiff:
    added: list = field(default_factory=list)
    changed: list[SyncChange] = field(default_factory=list)
    unchanged: list = field(default_factory=list)
    orphaned: list = field(default_factory=list)
    matches: dict[int, int] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.changed)

    def to_dict(self) -> dict:
        return {
            "added": [
                {"definition_id": d.id, "name": d.name, "kind": d.kind, "sort_order": d.sort_order}
                for d in self.added
            ],
            "changed": [c.to_dict() for c in self.changed],
            "unchanged": [
                {"item_id": i.id, "definition_id": i.definition_id, "name": i.name}
                for i in self.unchanged
            ],
            "orphaned": [
                {"item_id": i.id, "definition_id": i.definition_id, "name": i.name}
                for i in self.orphaned
            ],
        }


def _order(row):
    return (row.sort_order or 0, row.id)


def match_items(items, definitions) -> tuple[dict[int, int], dict[int, str]]:
    """Return ``({item_id: definition_id}, {item_id: match kind})``."""
    defs_by_id = {d.id: d for d in definitions}
    matches: dict[int, int] = {}
    how: dict[int, str] = {}
    taken: set[int] = set()

    for item in sorted(items, key=_order):
        def_id = item.definition_id
        if def_id in defs_by_id and def_id not in taken:
            matches[item.id] = def_id
            how[item.id] = MATCH_LINEAGE
            taken.add(def_id)

    leftover_items = [i for i in sorted(items, key=_order) if i.id not in matches]
    for defn in sorted(definitions, key=_order):
        if defn.id in taken:
            continue
        for item in leftover_items:
            if item.id in matches:
                continue
            if item.kind == defn.kind and (item.sort_order or 0) == (defn.sort_order or 0):
                matches[item.id] = defn.id
                how[item.id] = MATCH_POSITION
                taken.add(defn.id)
                break

    return matches, how


def _fields(row, ref) -> dict:
    return {
        "name": row.name,
        "kind": row.kind,
        "anchor_type": row.anchor_type,
        "anchor_ref": ref,
        "anchor_milestone_name": row.anchor_milestone_name,
        "fixed_date": row.fixed_date.isoformat() if row.fixed_date else None,
        "offset_days": row.offset_days or 0,
        "sort_order": row.sort_order or 0,
    }


def field_diff(item, definition, item_to_def: dict[int, int]) -> dict:
    """``{field: {"old": item value, "new": definition value}}`` for differing fields."""
    item_ref = None
    def_ref = None
    if item.anchor_type == AnchorType.SCHEDULE_ITEM.value:
        # unmatched targets keep an item-scoped marker so they never equal a definition id
        item_ref = item_to_def.get(item.anchor_ref_id, f"item:{item.anchor_ref_id}")
    if definition.anchor_type == AnchorType.SCHEDULE_ITEM.value:
        def_ref = definition.anchor_ref_id

    old = _fields(item, item_ref)
    new = _fields(definition, def_ref)
    return {
        name: {"old": old[name], "new": new[name]}
        for name in COMPARED_FIELDS
        if old[name] != new[name]
    }


def diff_activity(items, definitions) -> SyncDiff:
    """Compare an activity's items with the template's live definitions."""
    items = list(items)
    definitions = list(definitions)
    matches, how = match_items(items, definitions)
    defs_by_id = {d.id: d for d in definitions}
    matched_defs = set(matches.values())

    diff = SyncDiff(matches=matches)
    for item in sorted(items, key=_order):
        def_id = matches.get(item.id)
        if def_id is None:
            diff.orphaned.append(item)
            continue
        defn = defs_by_id[def_id]
        fields = field_diff(item, defn, matches)
        if fields or how[item.id] == MATCH_POSITION:
            diff.changed.append(SyncChange(item=item, definition=defn, match=how[item.id], fields=fields))
        else:
            diff.unchanged.append(item)

    diff.added = [d for d in sorted(definitions, key=_order) if d.id not in matched_defs]
    return diff
