"""
Tests for derivation and propagation endpoints.

Covers:
    - GET  /projects/<id>/schedule/derived
    - GET  /projects/<id>/propagation/preview
    - POST /projects/<id>/propagation/apply
    - cascade through SCHEDULE_ITEM anchors, idempotence, skip policies,
      supplier selection, strict conflicts and rollback on write failure
"""

from datetime import date

import pytest
from sqlalchemy.exc import SQLAlchemyError

from sqts.models import db
from sqts.models.audit import AuditLog
from sqts.models.project import ProjectMilestone, SupplierProject
from sqts.models.schedule import ProjectScheduleItem, ScheduleItemInstance
from sqts.services.anchors import Completion, FixedDate
from factories import (
    attach,
    cascade_template,
    make_definition,
    make_project,
    make_supplier,
    make_template,
    milestone_template,
)


def _item(name):
    return ProjectScheduleItem.query.filter_by(name=name).one()


def _instance(item_name, supplier):
    return (
        ScheduleItemInstance.query
        .join(SupplierProject, ScheduleItemInstance.supplier_project_id == SupplierProject.id)
        .filter(SupplierProject.supplier_id == supplier.id)
        .filter(ScheduleItemInstance.project_schedule_item_id == _item(item_name).id)
        .one()
    )


@pytest.fixture()
def cascade(client):
    """Project with the M1/M2 cascade and one supplier, M1 moved to 2024-02-01."""
    project = make_project(milestones={"SOP": date(2024, 6, 1)})
    supplier = make_supplier()
    template, _, _ = cascade_template()
    attach(project, template, supplier)

    res = client.put(f"/api/v1/project-items/{_item('M1').id}", json={"fixed_date": "2024-02-01"})
    assert res.status_code == 200
    return project, supplier


# ═════════════════════════════════════════════════════════════════════════════
# Derived schedule
# ═════════════════════════════════════════════════════════════════════════════


class TestDerived:

    def test_instances_start_with_derived_dates(self, client):
        project = make_project()
        supplier = make_supplier()
        template, _, _ = cascade_template()
        attach(project, template, supplier)

        assert _instance("M1", supplier).computed_date == date(2024, 1, 10)
        assert _instance("M2", supplier).computed_date == date(2024, 1, 15)

    def test_derived_endpoint(self, client, cascade):
        project, _ = cascade
        res = client.get(f"/api/v1/projects/{project.id}/schedule/derived")
        assert res.status_code == 200
        body = res.get_json()
        assert body["dates"][str(_item("M1").id)] == "2024-02-01"
        assert body["dates"][str(_item("M2").id)] == "2024-02-06"
        assert body["cycles"] == []
        assert body["supplier_id"] is None

    def test_completion_anchor_needs_supplier(self, client):
        project = make_project()
        supplier = make_supplier()
        template = make_template("Close-out")
        make_definition(template, "Archive", Completion(), offset_days=7)
        attach(project, template, supplier)

        inst = _instance("Archive", supplier)
        inst.completion_date = date(2024, 3, 1)
        db.session.commit()
        item_key = str(_item("Archive").id)

        body = client.get(f"/api/v1/projects/{project.id}/schedule/derived").get_json()
        assert body["dates"][item_key] is None

        body = client.get(
            f"/api/v1/projects/{project.id}/schedule/derived?supplier_id={supplier.id}"
        ).get_json()
        assert body["dates"][item_key] == "2024-03-08"

    def test_unknown_supplier_is_404(self, client, cascade):
        project, _ = cascade
        res = client.get(f"/api/v1/projects/{project.id}/schedule/derived?supplier_id=999")
        assert res.status_code == 404

    def test_unknown_project_is_404(self, client):
        res = client.get("/api/v1/projects/999/schedule/derived")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═════════════════════════════════════════════════════════════════════════════
# Preview
# ═════════════════════════════════════════════════════════════════════════════


class TestPreview:

    def test_cascade_preview(self, client, cascade):
        project, supplier = cascade
        res = client.get(f"/api/v1/projects/{project.id}/propagation/preview")
        assert res.status_code == 200
        body = res.get_json()

        changes = {e["item_name"]: e for e in body["will_change"]}
        assert changes["M1"]["current_date"] == "2024-01-10"
        assert changes["M1"]["new_date"] == "2024-02-01"
        assert changes["M2"]["current_date"] == "2024-01-15"
        assert changes["M2"]["new_date"] == "2024-02-06"
        assert changes["M2"]["supplier_id"] == supplier.id
        assert body["wont_change"] == []

    def test_grouped_by_supplier_name_then_item_order(self, client):
        project = make_project()
        template, _, _ = cascade_template()
        attach(project, template, make_supplier("Zeta Forge"), make_supplier("Acme Castings"))
        client.put(f"/api/v1/project-items/{_item('M1').id}", json={"fixed_date": "2024-02-01"})

        body = client.get(f"/api/v1/projects/{project.id}/propagation/preview").get_json()
        assert [(e["supplier_name"], e["item_name"]) for e in body["will_change"]] == [
            ("Acme Castings", "M1"),
            ("Acme Castings", "M2"),
            ("Zeta Forge", "M1"),
            ("Zeta Forge", "M2"),
        ]

    def test_preview_does_not_write(self, client, cascade):
        project, supplier = cascade
        client.get(f"/api/v1/projects/{project.id}/propagation/preview")
        assert _instance("M1", supplier).computed_date == date(2024, 1, 10)

    def test_locked_instance_never_in_will_change(self, client, cascade):
        project, supplier = cascade
        _instance("M2", supplier).locked = True
        db.session.commit()

        body = client.get(f"/api/v1/projects/{project.id}/propagation/preview").get_json()
        assert [e["item_name"] for e in body["will_change"]] == ["M1"]
        assert body["wont_change"][0]["item_name"] == "M2"
        assert body["wont_change"][0]["reason"] == "Locked"

    def test_locked_instance_changes_once_policy_off(self, client, cascade):
        project, supplier = cascade
        _instance("M2", supplier).locked = True
        db.session.commit()
        client.put("/api/v1/settings/propagation_skip_locked", json={"value": False})

        body = client.get(f"/api/v1/projects/{project.id}/propagation/preview").get_json()
        assert {e["item_name"] for e in body["will_change"]} == {"M1", "M2"}

    def test_milestone_move_shows_in_preview(self, client):
        project = make_project(milestones={"SOP": date(2024, 6, 1)})
        supplier = make_supplier()
        template, _ = milestone_template(milestone="SOP")
        attach(project, template, supplier)
        assert _instance("Gate", supplier).computed_date == date(2024, 5, 22)

        sop = ProjectMilestone.query.filter_by(name="SOP").one()
        res = client.put("/api/v1/milestones/dates",
                         json={"updates": [{"milestone_id": sop.id, "date": "2024-07-01"}]})
        assert res.status_code == 200

        body = client.get(f"/api/v1/projects/{project.id}/propagation/preview").get_json()
        assert body["will_change"][0]["new_date"] == "2024-06-21"

    def test_undated_milestone_reports_no_date(self, client):
        project = make_project(milestones={"SOP": None})
        supplier = make_supplier()
        template, _ = milestone_template(milestone="SOP")
        attach(project, template, supplier)

        body = client.get(f"/api/v1/projects/{project.id}/propagation/preview").get_json()
        assert body["will_change"] == []
        assert body["wont_change"][0]["reason"] == "No date"


# ═════════════════════════════════════════════════════════════════════════════
# Apply
# ═════════════════════════════════════════════════════════════════════════════


class TestApply:

    def _apply(self, client, project, **body):
        return client.post(f"/api/v1/projects/{project.id}/propagation/apply", json=body)

    def test_apply_writes_computed_dates(self, client, cascade):
        project, supplier = cascade
        res = self._apply(client, project, supplier_ids=[supplier.id])
        assert res.status_code == 200
        body = res.get_json()
        assert body["updated_count"] == 2
        assert body["skipped_count"] == 0
        assert body["conflicts"] == []

        assert _instance("M1", supplier).computed_date == date(2024, 2, 1)
        assert _instance("M2", supplier).computed_date == date(2024, 2, 6)

    def test_second_apply_is_noop(self, client, cascade):
        project, supplier = cascade
        self._apply(client, project, supplier_ids=[supplier.id])
        body = self._apply(client, project, supplier_ids=[supplier.id]).get_json()
        assert body["updated_count"] == 0
        assert body["skipped_count"] == 2

    def test_only_selected_suppliers_change(self, client, cascade):
        project, first = cascade
        second = make_supplier("Beta Forge")
        client.post(f"/api/v1/projects/{project.id}/suppliers", json={"supplier_id": second.id})

        body = self._apply(client, project, supplier_ids=[first.id]).get_json()
        assert body["updated_count"] == 2
        assert _instance("M1", first).computed_date == date(2024, 2, 1)
        # second supplier joined after the move, so its instances are already current
        assert _instance("M1", second).computed_date == date(2024, 2, 1)

    def test_unselected_supplier_keeps_stale_dates(self, client):
        project = make_project()
        first, second = make_supplier("Acme"), make_supplier("Beta")
        template, _, _ = cascade_template()
        attach(project, template, first, second)
        client.put(f"/api/v1/project-items/{_item('M1').id}", json={"fixed_date": "2024-02-01"})

        body = self._apply(client, project, supplier_ids=[second.id]).get_json()
        assert body["updated_count"] == 2
        assert _instance("M2", first).computed_date == date(2024, 1, 15)
        assert _instance("M2", second).computed_date == date(2024, 2, 6)

    def test_locked_instance_is_skipped(self, client, cascade):
        project, supplier = cascade
        _instance("M2", supplier).locked = True
        db.session.commit()

        body = self._apply(client, project, supplier_ids=[supplier.id]).get_json()
        assert body["updated_count"] == 1
        assert body["skipped_count"] == 1
        assert _instance("M2", supplier).computed_date == date(2024, 1, 15)

    def test_override_is_never_touched(self, client, cascade):
        project, supplier = cascade
        inst = _instance("M1", supplier)
        inst.override_enabled = True
        inst.override_date = date(2024, 1, 20)
        db.session.commit()

        self._apply(client, project, supplier_ids=[supplier.id])
        inst = _instance("M1", supplier)
        assert inst.override_date == date(2024, 1, 20)
        assert inst.computed_date == date(2024, 1, 10)

    def test_strict_conflict_writes_nothing(self, client, cascade):
        project, supplier = cascade
        m1 = _instance("M1", supplier)
        res = self._apply(
            client, project, supplier_ids=[supplier.id],
            expected={str(m1.id): "2024-03-01"}, strict=True,
        )
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STALE_PLAN"
        assert body["conflicts"] == [
            {"instance_id": m1.id, "expected": "2024-03-01", "actual": "2024-02-01"}
        ]
        assert _instance("M1", supplier).computed_date == date(2024, 1, 10)

    def test_non_strict_conflict_is_reported_and_applied(self, client, cascade):
        project, supplier = cascade
        m1 = _instance("M1", supplier)
        body = self._apply(
            client, project, supplier_ids=[supplier.id],
            expected=[{"instance_id": m1.id, "new_date": "2024-03-01"}],
        ).get_json()
        assert body["updated_count"] == 2
        assert len(body["conflicts"]) == 1

    def test_matching_expectation_has_no_conflicts(self, client, cascade):
        project, supplier = cascade
        m1 = _instance("M1", supplier)
        body = self._apply(
            client, project, supplier_ids=[supplier.id],
            expected={str(m1.id): "2024-02-01"}, strict=True,
        ).get_json()
        assert body["conflicts"] == []
        assert body["updated_count"] == 2

    def test_apply_writes_audit(self, client, cascade):
        project, supplier = cascade
        self._apply(client, project, supplier_ids=[supplier.id])
        log = AuditLog.query.filter_by(action="propagation.apply").one()
        assert log.project_id == project.id
        assert len(log.diff["updated"]) == 2

    def test_write_failure_rolls_back(self, client, cascade, monkeypatch):
        project, supplier = cascade

        def _boom():
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(db.session, "commit", _boom)
        res = self._apply(client, project, supplier_ids=[supplier.id])
        monkeypatch.undo()

        assert res.status_code == 500
        assert res.get_json()["updated_count"] == 0
        assert _instance("M1", supplier).computed_date == date(2024, 1, 10)

    def test_supplier_ids_required(self, client, cascade):
        project, _ = cascade
        res = self._apply(client, project)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_supplier_ids_must_be_ints(self, client, cascade):
        project, _ = cascade
        res = self._apply(client, project, supplier_ids=["acme"])
        assert res.status_code == 422

    def test_unknown_project(self, client):
        res = client.post("/api/v1/projects/404/propagation/apply", json={"supplier_ids": [1]})
        assert res.status_code == 404

    def test_fixed_date_item_in_second_activity(self, client, cascade):
        project, supplier = cascade
        template = make_template("Tooling")
        make_definition(template, "Tool kick-off", FixedDate(date(2024, 4, 1)))
        res = client.post(f"/api/v1/projects/{project.id}/activities",
                          json={"activity_template_id": template.id})
        assert res.status_code == 201
        assert res.get_json()["instances_created"] == 1
        assert _instance("Tool kick-off", supplier).computed_date == date(2024, 4, 1)
