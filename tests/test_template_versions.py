"""
Tests for template versioning and project sync.

Covers:
    - live version bumps on definition writes
    - snapshots: save / list / get / delete, duplicate save conflict
    - restore: fresh definitions with remapped anchors, version bump
    - out-of-sync detection (per template, per project, project status)
    - sync preview / apply / sync-all, orphans kept, positional relink
    - apply-to-projects batch instantiation
"""

from datetime import date

import pytest

from sqts.models import db
from sqts.models.audit import AuditLog
from sqts.models.schedule import ProjectActivity, ProjectScheduleItem, ScheduleItemInstance
from sqts.models.template import ActivityTemplate, ScheduleItemDefinition
from factories import attach, cascade_template, make_project, make_supplier


def _add_m3(client, template, m2):
    res = client.post(f"/api/v1/templates/{template.id}/definitions", json={
        "name": "M3", "kind": "TASK", "anchor_type": "SCHEDULE_ITEM",
        "anchor_ref_id": m2.id, "offset_days": 3,
    })
    assert res.status_code == 201
    return res.get_json()


def _activity(project):
    return ProjectActivity.query.filter_by(project_id=project.id).one()


def _items(activity_id):
    return {
        i.name: i for i in ProjectScheduleItem.query.filter_by(project_activity_id=activity_id)
    }


@pytest.fixture()
def synced(client):
    """Cascade template attached to one project with one supplier, all at v1."""
    project = make_project()
    supplier = make_supplier()
    template, m1, m2 = cascade_template()
    attach(project, template, supplier)
    return project, supplier, template, m1, m2


# ═════════════════════════════════════════════════════════════════════════════
# Live version + out of sync
# ═════════════════════════════════════════════════════════════════════════════


class TestOutOfSync:

    def test_adding_definition_bumps_version(self, client, synced):
        _, _, template, _, m2 = synced
        _add_m3(client, template, m2)
        assert db.session.get(ActivityTemplate, template.id).version == 2

    def test_out_of_sync_lists_every_older_activity(self, client, synced):
        project, _, template, _, m2 = synced
        other = make_project("Program Y")
        attach(other, template)
        _add_m3(client, template, m2)

        res = client.get(f"/api/v1/templates/{template.id}/out-of-sync")
        assert res.status_code == 200
        rows = res.get_json()
        assert {r["project_id"] for r in rows} == {project.id, other.id}
        assert all(r["synced_version"] == 1 and r["latest_version"] == 2 for r in rows)

    def test_in_sync_template_lists_nothing(self, client, synced):
        _, _, template, _, _ = synced
        assert client.get(f"/api/v1/templates/{template.id}/out-of-sync").get_json() == []

    def test_project_out_of_sync(self, client, synced):
        project, _, template, _, m2 = synced
        _add_m3(client, template, m2)
        rows = client.get(f"/api/v1/projects/{project.id}/out-of-sync").get_json()
        assert len(rows) == 1
        assert rows[0]["template_name"] == template.name

    def test_project_status(self, client, synced):
        project, _, template, _, _ = synced
        bare = make_project("Program Z")
        rows = {r["project_id"]: r for r in
                client.get(f"/api/v1/templates/{template.id}/project-status").get_json()}
        assert rows[project.id]["has_activity"] is True
        assert rows[project.id]["is_out_of_sync"] is False
        assert rows[bare.id]["has_activity"] is False

    def test_unknown_template(self, client):
        assert client.get("/api/v1/templates/999/out-of-sync").status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Sync
# ═════════════════════════════════════════════════════════════════════════════


class TestSync:

    def test_preview_shows_added_definition(self, client, synced):
        project, _, template, _, m2 = synced
        _add_m3(client, template, m2)
        activity = _activity(project)

        body = client.get(f"/api/v1/project-activities/{activity.id}/sync/preview").get_json()
        assert [a["name"] for a in body["added"]] == ["M3"]
        assert len(body["unchanged"]) == 2
        assert body["current_version"] == 1
        assert body["latest_version"] == 2

    def test_apply_creates_one_instance(self, client, synced):
        project, supplier, template, _, m2 = synced
        _add_m3(client, template, m2)
        activity = _activity(project)

        res = client.post(f"/api/v1/project-activities/{activity.id}/sync/apply")
        assert res.status_code == 200
        body = res.get_json()
        assert body["added"] == 1
        assert body["instances_created"] == 1
        assert body["to_version"] == 2
        assert _activity(project).synced_version == 2

        items = _items(activity.id)
        assert items["M3"].anchor_ref_id == items["M2"].id
        m3_instance = ScheduleItemInstance.query.filter_by(project_schedule_item_id=items["M3"].id).one()
        assert m3_instance.computed_date == date(2024, 1, 18)
        assert client.get(f"/api/v1/templates/{template.id}/out-of-sync").get_json() == []

    def test_changed_definition_updates_item_not_instances(self, client, synced):
        project, supplier, template, _, m2 = synced
        res = client.put(f"/api/v1/definitions/{m2.id}", json={"offset_days": 7})
        assert res.status_code == 200
        activity = _activity(project)

        preview = client.get(f"/api/v1/project-activities/{activity.id}/sync/preview").get_json()
        assert preview["changed"][0]["fields"] == {"offset_days": {"old": 5, "new": 7}}
        assert preview["changed"][0]["match"] == "lineage"

        body = client.post(f"/api/v1/project-activities/{activity.id}/sync/apply").get_json()
        assert body["updated"] == 1
        item = _items(activity.id)["M2"]
        assert item.offset_days == 7
        instance = ScheduleItemInstance.query.filter_by(project_schedule_item_id=item.id).one()
        assert instance.computed_date == date(2024, 1, 15)

        plan = client.get(f"/api/v1/projects/{project.id}/propagation/preview").get_json()
        assert plan["will_change"][0]["new_date"] == "2024-01-17"

    def test_deleted_definition_leaves_orphan(self, client, synced):
        project, _, template, _, m2 = synced
        assert client.delete(f"/api/v1/definitions/{m2.id}").status_code == 200
        activity = _activity(project)

        body = client.post(f"/api/v1/project-activities/{activity.id}/sync/apply").get_json()
        assert body["orphaned"] == 1
        assert "M2" in _items(activity.id)

    def test_new_definition_never_takes_a_deleted_id(self, client, synced):
        project, _, template, _, m2 = synced
        deleted_id = m2.id
        assert client.delete(f"/api/v1/definitions/{deleted_id}").status_code == 200
        res = client.post(f"/api/v1/templates/{template.id}/definitions", json={
            "name": "C", "kind": "MILESTONE", "anchor_type": "FIXED_DATE", "fixed_date": "2024-03-01",
        })
        assert res.get_json()["id"] != deleted_id

        body = client.get(f"/api/v1/project-activities/{_activity(project).id}/sync/preview").get_json()
        assert [o["name"] for o in body["orphaned"]] == ["M2"]
        assert [a["name"] for a in body["added"]] == ["C"]
        assert body["changed"] == []

    def test_sync_writes_audit(self, client, synced):
        project, _, template, _, m2 = synced
        _add_m3(client, template, m2)
        client.post(f"/api/v1/project-activities/{_activity(project).id}/sync/apply")
        log = AuditLog.query.filter_by(action="project_activity.sync").one()
        assert log.project_id == project.id
        assert log.diff["added"] == 1

    def test_sync_all(self, client, synced):
        project, _, template, _, m2 = synced
        other = make_project("Program Y")
        attach(other, template)
        _add_m3(client, template, m2)
        ids = [a.id for a in ProjectActivity.query.order_by(ProjectActivity.id)]

        res = client.post("/api/v1/templates/sync-all", json={"project_activity_ids": ids})
        assert res.status_code == 200
        assert res.get_json()["synced"] == 2
        assert client.get(f"/api/v1/templates/{template.id}/out-of-sync").get_json() == []

    def test_sync_all_unknown_id_syncs_nothing(self, client, synced):
        project, _, template, _, m2 = synced
        _add_m3(client, template, m2)
        activity = _activity(project)

        res = client.post("/api/v1/templates/sync-all",
                          json={"project_activity_ids": [activity.id, 999]})
        assert res.status_code == 404
        assert _activity(project).synced_version == 1

    def test_sync_all_requires_ids(self, client):
        assert client.post("/api/v1/templates/sync-all", json={}).status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Snapshots & restore
# ═════════════════════════════════════════════════════════════════════════════


class TestVersions:

    def test_save_and_list(self, client, synced):
        _, _, template, _, m2 = synced
        res = client.post(f"/api/v1/templates/{template.id}/versions", json={"name": "Baseline"})
        assert res.status_code == 201
        assert res.get_json()["version_number"] == 1
        assert res.get_json()["definition_count"] == 2

        _add_m3(client, template, m2)
        client.post(f"/api/v1/templates/{template.id}/versions", json={})
        rows = client.get(f"/api/v1/templates/{template.id}/versions").get_json()
        assert [r["version_number"] for r in rows] == [2, 1]
        assert rows[0]["name"] == "Version 2"

    def test_save_twice_at_same_version_conflicts(self, client, synced):
        _, _, template, _, _ = synced
        client.post(f"/api/v1/templates/{template.id}/versions", json={})
        res = client.post(f"/api/v1/templates/{template.id}/versions", json={})
        assert res.status_code == 409

    def test_get_includes_snapshot(self, client, synced):
        _, _, template, m1, _ = synced
        version_id = client.post(f"/api/v1/templates/{template.id}/versions", json={}).get_json()["id"]
        body = client.get(f"/api/v1/template-versions/{version_id}").get_json()
        names = [d["name"] for d in body["snapshot"]["definitions"]]
        assert names == ["M1", "M2"]
        assert body["snapshot"]["definitions"][1]["anchor_ref_id"] == m1.id

    def test_delete(self, client, synced):
        _, _, template, _, _ = synced
        version_id = client.post(f"/api/v1/templates/{template.id}/versions", json={}).get_json()["id"]
        assert client.delete(f"/api/v1/template-versions/{version_id}").status_code == 200
        assert client.get(f"/api/v1/template-versions/{version_id}").status_code == 404

    def test_restore_recreates_definitions_and_bumps(self, client, synced):
        _, _, template, _, m2 = synced
        version_id = client.post(f"/api/v1/templates/{template.id}/versions", json={}).get_json()["id"]
        _add_m3(client, template, m2)

        res = client.post(f"/api/v1/template-versions/{version_id}/restore")
        assert res.status_code == 200
        body = res.get_json()
        assert body["version"] == 3
        defs = {d["name"]: d for d in body["definitions"]}
        assert set(defs) == {"M1", "M2"}
        assert defs["M2"]["anchor_ref_id"] == defs["M1"]["id"]

    def test_sync_after_restore_relinks_items(self, client, synced):
        project, supplier, template, _, m2 = synced
        version_id = client.post(f"/api/v1/templates/{template.id}/versions", json={}).get_json()["id"]
        _add_m3(client, template, m2)
        client.post(f"/api/v1/template-versions/{version_id}/restore")
        activity = _activity(project)

        body = client.post(f"/api/v1/project-activities/{activity.id}/sync/apply").get_json()
        assert body["added"] == 0
        assert body["orphaned"] == 0
        assert body["instances_created"] == 0
        assert body["to_version"] == 3

        live_ids = {d.id for d in ScheduleItemDefinition.query.filter_by(activity_template_id=template.id)}
        items = _items(activity.id)
        assert {i.definition_id for i in items.values()} == live_ids
        assert items["M2"].anchor_ref_id == items["M1"].id

    def test_restore_after_sync_orphans_extra_item(self, client, synced):
        project, _, template, _, m2 = synced
        version_id = client.post(f"/api/v1/templates/{template.id}/versions", json={}).get_json()["id"]
        _add_m3(client, template, m2)
        activity = _activity(project)
        client.post(f"/api/v1/project-activities/{activity.id}/sync/apply")
        client.post(f"/api/v1/template-versions/{version_id}/restore")

        body = client.post(f"/api/v1/project-activities/{activity.id}/sync/apply").get_json()
        assert body["orphaned"] == 1
        assert set(_items(activity.id)) == {"M1", "M2", "M3"}

    def test_restore_unknown_version(self, client):
        assert client.post("/api/v1/template-versions/999/restore").status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Apply to projects
# ═════════════════════════════════════════════════════════════════════════════


class TestApplyToProjects:

    def test_mixed_batch(self, client, synced):
        project, _, template, _, _ = synced
        fresh = make_project("Program Y")
        fresh_supplier = make_supplier("Beta Forge")
        client.post(f"/api/v1/projects/{fresh.id}/suppliers", json={"supplier_id": fresh_supplier.id})

        res = client.post(f"/api/v1/templates/{template.id}/apply-to-projects",
                          json={"project_ids": [project.id, fresh.id, 999]})
        assert res.status_code == 200
        rows = {r["project_id"]: r for r in res.get_json()["results"]}
        assert rows[project.id]["reason"] == "Already instantiated"
        assert rows[fresh.id]["added"] is True
        assert rows[fresh.id]["instances_created"] == 2
        assert rows[999]["reason"] == "Project not found"

    def test_second_run_adds_nothing(self, client, synced):
        _, _, template, _, _ = synced
        fresh = make_project("Program Y")
        url = f"/api/v1/templates/{template.id}/apply-to-projects"
        client.post(url, json={"project_ids": [fresh.id]})
        rows = client.post(url, json={"project_ids": [fresh.id]}).get_json()["results"]
        assert rows[0]["skipped"] is True
        assert ProjectActivity.query.filter_by(project_id=fresh.id).count() == 1

    def test_attach_activity_twice_conflicts(self, client, synced):
        project, _, template, _, _ = synced
        res = client.post(f"/api/v1/projects/{project.id}/activities",
                          json={"activity_template_id": template.id})
        assert res.status_code == 409

    def test_project_ids_required(self, client, synced):
        _, _, template, _, _ = synced
        res = client.post(f"/api/v1/templates/{template.id}/apply-to-projects", json={})
        assert res.status_code == 400
