"""
Tests for definition and project item editing.

Anchor payload rules, sibling-scope references, cycle rejection on write,
referenced-definition delete protection.
"""

from datetime import date

import pytest

from sqts.models import db
from sqts.models.audit import AuditLog
from sqts.models.schedule import ProjectScheduleItem
from sqts.models.template import ActivityTemplate, ScheduleItemDefinition
from sqts.services.anchors import FixedDate
from factories import attach, cascade_template, make_definition, make_project, make_template


@pytest.fixture()
def cascade():
    return cascade_template()


class TestCreate:

    def test_create_fixed_date(self, client):
        template = make_template()
        res = client.post(f"/api/v1/templates/{template.id}/definitions", json={
            "name": "Kick-off", "kind": "MILESTONE",
            "anchor_type": "FIXED_DATE", "fixed_date": "2024-03-04",
        })
        assert res.status_code == 201
        body = res.get_json()
        assert body["fixed_date"] == "2024-03-04"
        assert body["anchor_ref_id"] is None
        assert body["sort_order"] == 0
        assert db.session.get(ActivityTemplate, template.id).version == 2

    def test_sort_order_appends(self, client, cascade):
        template, _, _ = cascade
        res = client.post(f"/api/v1/templates/{template.id}/definitions", json={
            "name": "Report", "anchor_type": "COMPLETION",
        })
        assert res.get_json()["sort_order"] == 2
        assert res.get_json()["kind"] == "TASK"

    def test_list(self, client, cascade):
        template, _, _ = cascade
        rows = client.get(f"/api/v1/templates/{template.id}/definitions").get_json()
        assert [r["name"] for r in rows] == ["M1", "M2"]

    @pytest.mark.parametrize("payload", [
        {"anchor_type": "FIXED_DATE", "fixed_date": "2024-01-01"},
        {"name": "X", "anchor_type": "FIXED_DATE"},
        {"name": "X", "anchor_type": "FIXED_DATE", "fixed_date": "2024-01-01",
         "anchor_milestone_name": "SOP"},
        {"name": "X", "anchor_type": "SOMEDAY"},
        {"name": "X", "kind": "EPIC", "anchor_type": "COMPLETION"},
        {"name": "X", "anchor_type": "COMPLETION", "offset_days": "3"},
        {"name": "X", "anchor_type": "FIXED_DATE", "fixed_date": "tomorrow"},
    ])
    def test_invalid_payloads(self, client, payload):
        template = make_template()
        res = client.post(f"/api/v1/templates/{template.id}/definitions", json=payload)
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_CONSTRAINT"
        assert ScheduleItemDefinition.query.count() == 0

    def test_reference_outside_template_rejected(self, client, cascade):
        _, m1, _ = cascade
        other = make_template("Other")
        res = client.post(f"/api/v1/templates/{other.id}/definitions", json={
            "name": "X", "anchor_type": "SCHEDULE_ITEM", "anchor_ref_id": m1.id,
        })
        assert res.status_code == 422
        assert "same template" in res.get_json()["error"]

    def test_unknown_template(self, client):
        res = client.post("/api/v1/templates/999/definitions", json={
            "name": "X", "anchor_type": "COMPLETION",
        })
        assert res.status_code == 404


class TestUpdate:

    def test_switch_anchor_clears_old_payload(self, client, cascade):
        _, _, m2 = cascade
        res = client.put(f"/api/v1/definitions/{m2.id}", json={
            "anchor_type": "PROJECT_MILESTONE", "anchor_milestone_name": "SOP",
        })
        assert res.status_code == 200
        body = res.get_json()
        assert body["anchor_ref_id"] is None
        assert body["anchor_milestone_name"] == "SOP"

    def test_cycle_rejected(self, client, cascade):
        template, m1, m2 = cascade
        res = client.put(f"/api/v1/definitions/{m1.id}", json={
            "anchor_type": "SCHEDULE_ITEM", "anchor_ref_id": m2.id,
        })
        assert res.status_code == 422
        body = res.get_json()
        assert body["error"] == "Anchor would create a circular dependency"
        assert body["details"]["cycle"] == [m1.id, m2.id]

        m1 = db.session.get(ScheduleItemDefinition, m1.id)
        assert m1.anchor_type == "FIXED_DATE"
        assert db.session.get(ActivityTemplate, template.id).version == 1

    def test_self_reference_rejected(self, client, cascade):
        _, m1, _ = cascade
        res = client.put(f"/api/v1/definitions/{m1.id}", json={
            "anchor_type": "SCHEDULE_ITEM", "anchor_ref_id": m1.id,
        })
        assert res.status_code == 422

    def test_noop_update_keeps_version(self, client, cascade):
        template, _, m2 = cascade
        client.put(f"/api/v1/definitions/{m2.id}", json={"offset_days": 5})
        assert db.session.get(ActivityTemplate, template.id).version == 1
        assert AuditLog.query.filter_by(entity_type="schedule_item_definition").count() == 0

    def test_update_audited(self, client, cascade):
        _, _, m2 = cascade
        client.put(f"/api/v1/definitions/{m2.id}", json={"name": "PSW"},
                   headers={"X-Actor": "sqe.lead"})
        log = AuditLog.query.filter_by(entity_type="schedule_item_definition").one()
        assert log.actor == "sqe.lead"
        assert log.diff["fields"]["name"] == {"old": "M2", "new": "PSW"}


class TestDelete:

    def test_referenced_definition_protected(self, client, cascade):
        _, m1, m2 = cascade
        res = client.delete(f"/api/v1/definitions/{m1.id}")
        assert res.status_code == 422
        assert res.get_json()["details"]["referenced_by"] == [m2.id]

    def test_delete_leaf(self, client, cascade):
        template, _, m2 = cascade
        assert client.delete(f"/api/v1/definitions/{m2.id}").status_code == 200
        assert db.session.get(ActivityTemplate, template.id).version == 2
        assert client.delete(f"/api/v1/definitions/{m2.id}").status_code == 404


class TestProjectItems:

    @pytest.fixture()
    def items(self, cascade):
        template, _, _ = cascade
        project = make_project()
        attach(project, template)
        return {i.name: i for i in ProjectScheduleItem.query}

    def test_edit_does_not_touch_template(self, client, cascade, items):
        template, _, _ = cascade
        res = client.put(f"/api/v1/project-items/{items['M2'].id}", json={"offset_days": 9})
        assert res.status_code == 200
        assert res.get_json()["offset_days"] == 9
        assert db.session.get(ActivityTemplate, template.id).version == 1

    def test_cycle_rejected(self, client, items):
        res = client.put(f"/api/v1/project-items/{items['M1'].id}", json={
            "anchor_type": "SCHEDULE_ITEM", "anchor_ref_id": items["M2"].id,
        })
        assert res.status_code == 422

    def test_reference_must_stay_in_activity(self, client, items):
        other = make_template("Other")
        make_definition(other, "Elsewhere", FixedDate(date(2024, 1, 1)))
        project = ProjectScheduleItem.query.first().activity.project
        attach(project, other)
        elsewhere = ProjectScheduleItem.query.filter_by(name="Elsewhere").one()

        res = client.put(f"/api/v1/project-items/{items['M2'].id}", json={
            "anchor_type": "SCHEDULE_ITEM", "anchor_ref_id": elsewhere.id,
        })
        assert res.status_code == 422
        assert "same activity" in res.get_json()["error"]

    def test_unknown_item(self, client):
        assert client.put("/api/v1/project-items/999", json={"name": "X"}).status_code == 404
