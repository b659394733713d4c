"""Tests for workflow and tenant persistence."""

import pytest

from relay.core.errors import WorkflowNotFoundError
from relay.workflows.models import ConditionStep, InvocationType, Run, RunStatus, TriggerKind, WorkflowStatus


class TestSaveAndGet:
    def test_round_trip(self, workflows, workflow_factory):
        steps = [
            {"id": "s1", "module": "utilities.math.add", "inputs": {"a": 1, "b": 2}, "outputAs": "sum"},
            {"id": "c1", "condition": "{{sum}} > 2", "then": [
                {"id": "s2", "module": "utilities.text.uppercase", "inputs": {"text": "big"}}
            ]},
        ]
        workflows.save(workflow_factory(steps, trigger={"type": "schedule", "config": {"schedule": "0 9 * * *"}}))

        loaded = workflows.get("wf-1")
        assert loaded.trigger.type is TriggerKind.CRON
        assert loaded.trigger.schedule == "0 9 * * *"
        assert loaded.steps[0].output_as == "sum"
        assert isinstance(loaded.steps[1], ConditionStep)
        assert loaded.steps[1].then[0].id == "s2"

    def test_save_is_upsert_and_keeps_rollup(self, workflows, runs, workflow_factory, store_workflow):
        store_workflow([])
        runs.start(Run(id="r1", workflow_id="wf-1", user_id="user-1", trigger_type=InvocationType.MANUAL))
        runs.finish("r1", RunStatus.SUCCESS)

        updated = workflow_factory([], status=WorkflowStatus.PAUSED)
        updated.name = "Renamed"
        workflows.save(updated)

        loaded = workflows.get("wf-1")
        assert loaded.name == "Renamed"
        assert loaded.status is WorkflowStatus.PAUSED
        assert loaded.run_count == 1

    def test_missing(self, workflows):
        assert workflows.get("nope") is None
        with pytest.raises(WorkflowNotFoundError):
            workflows.require("nope")


class TestListing:
    def test_filters(self, workflows, workflow_factory):
        workflows.save(workflow_factory([], workflow_id="a", owner_id="u1"))
        workflows.save(workflow_factory([], workflow_id="b", owner_id="u2", status=WorkflowStatus.DRAFT))
        assert [w.id for w in workflows.list(owner_id="u1")] == ["a"]
        assert [w.id for w in workflows.list(status=WorkflowStatus.DRAFT)] == ["b"]
        assert len(workflows.list(limit=1)) == 1

    def test_scheduled_active_only(self, workflows, workflow_factory):
        cron = {"type": "cron", "config": {"schedule": "*/5 * * * *"}}
        workflows.save(workflow_factory([], workflow_id="cron-active", trigger=cron))
        workflows.save(workflow_factory([], workflow_id="cron-paused", trigger=cron, status=WorkflowStatus.PAUSED))
        workflows.save(workflow_factory([], workflow_id="manual"))
        assert [w.id for w in workflows.list_scheduled_active()] == ["cron-active"]

    def test_scheduled_active_skips_unloadable_rows(self, workflows, workflow_factory, conn):
        cron = {"type": "cron", "config": {"schedule": "*/5 * * * *"}}
        workflows.save(workflow_factory([], workflow_id="cron-bad", trigger=cron))
        workflows.save(workflow_factory([], workflow_id="cron-good", trigger=cron))
        conn.execute("UPDATE workflows SET config = ? WHERE id = ?", ('{"steps": [{"id": "x"}]}', "cron-bad"))

        assert [w.id for w in workflows.list_scheduled_active()] == ["cron-good"]


class TestStatus:
    def test_update_status(self, workflows, store_workflow):
        store_workflow([], status=WorkflowStatus.DRAFT)
        workflows.update_status("wf-1", WorkflowStatus.ACTIVE)
        assert workflows.get("wf-1").is_active

    def test_update_missing(self, workflows):
        with pytest.raises(WorkflowNotFoundError):
            workflows.update_status("nope", WorkflowStatus.ACTIVE)


class TestTenants:
    def test_unknown_tenant_is_active(self, workflows):
        assert workflows.is_tenant_active("org-x")
        assert workflows.is_tenant_active(None)

    def test_status_changes(self, workflows):
        workflows.set_tenant("org-1", name="Acme")
        assert workflows.is_tenant_active("org-1")
        workflows.set_tenant("org-1", status="inactive")
        assert not workflows.is_tenant_active("org-1")
        assert workflows.tenant_status("org-1") == "inactive"
