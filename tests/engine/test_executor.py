"""Tests for the run lifecycle."""

from relay.engine.events import ProgressStream
from relay.engine.executor import WorkflowExecutor
from relay.storage import RunRecorder
from relay.workflows.models import RunStatus, WorkflowStatus

ADD_STEP = {"id": "add", "module": "utilities.math.add", "inputs": {"a": 2, "b": 3}, "outputAs": "sum"}


class TestSuccessfulRun:
    def test_returns_output_and_records_run(self, executor, store_workflow, runs, workflows):
        store_workflow([ADD_STEP])
        outcome = executor.execute("wf-1", "user-1", "manual")

        assert outcome.success is True
        assert outcome.output == 5
        assert outcome.to_dict() == {"success": True, "runId": outcome.run_id, "output": 5}

        run = runs.get(outcome.run_id)
        assert run.status is RunStatus.SUCCESS
        assert run.output == 5
        assert run.duration_ms is not None
        assert run.trigger_type.value == "manual"

        workflow = workflows.get("wf-1")
        assert workflow.run_count == 1
        assert workflow.last_run_status is RunStatus.SUCCESS
        assert workflow.last_run_at is not None

    def test_payload_is_recorded(self, executor, store_workflow, runs):
        store_workflow([{"id": "up", "module": "utilities.text.uppercase", "inputs": {"text": "{{trigger.word}}"}}])
        outcome = executor.execute("wf-1", "user-1", "webhook", {"word": "hi"})
        assert outcome.output == "HI"
        run = runs.get(outcome.run_id)
        assert run.trigger_payload == {"word": "hi"}
        assert run.trigger_type.value == "webhook"

    def test_explicit_run_id(self, executor, store_workflow, runs):
        store_workflow([ADD_STEP])
        outcome = executor.execute("wf-1", "user-1", "cron", run_id="run-fixed")
        assert outcome.run_id == "run-fixed"
        assert runs.get("run-fixed").trigger_type.value == "scheduled"

    def test_credentials_are_bound(self, executor, store_workflow, credentials):
        credentials.put("user-1", "slack_oauth", "xoxb-1")
        store_workflow([{"id": "k", "module": "utilities.text.concat", "inputs": {"first": "{{user.slack}}", "second": "{{slack}}", "separator": "|"}}])
        outcome = executor.execute("wf-1", "user-1", "manual")
        assert outcome.output == "xoxb-1|xoxb-1"

    def test_progress_events(self, executor, store_workflow, sink):
        store_workflow([ADD_STEP])
        outcome = executor.execute("wf-1", "user-1", "manual", on_progress=sink)
        assert sink.types == ["run_started", "step_started", "step_completed", "run_completed"]
        started = sink.of_type("run_started")[0]
        assert started.to_dict() == {"type": "run_started", "workflowId": "wf-1", "runId": outcome.run_id, "totalSteps": 1}
        assert sink.of_type("run_completed")[0].output == 5


class TestFailedRun:
    def test_step_failure_is_recorded(self, executor, store_workflow, runs, workflows, sink):
        store_workflow(
            [
                ADD_STEP,
                {"id": "div", "module": "utilities.math.divide", "inputs": {"a": "{{sum}}", "b": 0}},
            ]
        )
        outcome = executor.execute("wf-1", "user-1", "manual", on_progress=sink)

        assert outcome.success is False
        assert outcome.error_step == "div"
        assert "Cannot divide by zero" in outcome.error
        assert outcome.to_dict()["errorStep"] == "div"

        run = runs.get(outcome.run_id)
        assert run.status is RunStatus.ERROR
        assert run.error_step == "div"
        assert run.output is None

        workflow = workflows.get("wf-1")
        assert workflow.run_count == 1
        assert workflow.last_run_status is RunStatus.ERROR
        assert workflow.last_run_error == outcome.error

        assert sink.types[-1] == "run_failed"
        assert sink.of_type("run_failed")[0].to_dict()["errorStep"] == "div"

    def test_missing_workflow_is_refused_without_run_row(self, executor, runs, sink):
        outcome = executor.execute("wf-missing", "user-1", "manual", on_progress=sink)
        assert outcome.success is False
        assert outcome.error == "Workflow not found: wf-missing"
        assert runs.get(outcome.run_id) is None
        assert sink.types == ["run_failed"]

    def test_inactive_tenant_is_refused(self, executor, store_workflow, workflows, runs):
        workflows.set_tenant("org-1", status="suspended")
        store_workflow([ADD_STEP], tenant_id="org-1")
        outcome = executor.execute("wf-1", "user-1", "manual")
        assert outcome.success is False
        assert outcome.error == "Cannot execute workflow: client organization is inactive"
        assert runs.get(outcome.run_id) is None
        assert workflows.get("wf-1").run_count == 0

    def test_unknown_tenant_counts_as_active(self, executor, store_workflow):
        store_workflow([ADD_STEP], tenant_id="org-unknown")
        assert executor.execute("wf-1", "user-1", "manual").success is True

    def test_unparseable_stored_definition_is_refused(self, executor, store_workflow, conn, runs, sink):
        store_workflow([ADD_STEP])
        conn.execute("UPDATE workflows SET config = ? WHERE id = ?", ('{"steps": [{"id": "a"}]}', "wf-1"))

        outcome = executor.execute("wf-1", "user-1", "manual", on_progress=sink)
        assert outcome.success is False
        assert "Unknown step type" in outcome.error
        assert runs.get(outcome.run_id) is None
        assert sink.types == ["run_failed"]

    def test_corrupt_stored_json_is_refused(self, executor, store_workflow, conn):
        store_workflow([ADD_STEP])
        conn.execute("UPDATE workflows SET config = ? WHERE id = ?", ("{not json", "wf-1"))
        outcome = executor.execute("wf-1", "user-1", "manual")
        assert outcome.success is False
        assert outcome.error.startswith("Stored JSON does not parse")

    def test_draft_workflow_can_be_run_by_hand(self, executor, store_workflow, runs):
        store_workflow([ADD_STEP], status=WorkflowStatus.DRAFT)
        outcome = executor.execute("wf-1", "user-1", "manual")
        assert outcome.success is True
        assert runs.get(outcome.run_id).status is RunStatus.SUCCESS

    def test_failing_sink_does_not_fail_run(self, executor, store_workflow, runs):
        store_workflow([ADD_STEP])

        def broken(event):
            raise RuntimeError("observer gone")

        outcome = executor.execute("wf-1", "user-1", "manual", on_progress=broken)
        assert outcome.success is True
        assert runs.get(outcome.run_id).status is RunStatus.SUCCESS

    def test_stalled_stream_does_not_block_run(self, executor, store_workflow, runs):
        store_workflow([ADD_STEP, {**ADD_STEP, "id": "add-again"}])
        stream = ProgressStream(maxsize=1)

        outcome = executor.execute("wf-1", "user-1", "manual", on_progress=stream)
        assert outcome.success is True
        assert runs.get(outcome.run_id).status is RunStatus.SUCCESS
        assert stream.overflowed
        assert [event.type for event in stream] == ["run_started"]


class TestStorageFailure:
    def test_run_completes_when_recording_fails(self, workflows, runs, dispatcher, store_workflow, monkeypatch):
        store_workflow([ADD_STEP])
        recorder = RunRecorder(runs, max_attempts=3, backlog=10)
        executor = WorkflowExecutor(workflows, recorder, dispatcher)

        real_start = runs.start
        state = {"locked": True}

        def start(run):
            if state["locked"]:
                raise RuntimeError("database is locked")
            return real_start(run)

        monkeypatch.setattr(runs, "start", start)
        outcome = executor.execute("wf-1", "user-1", "manual")
        assert outcome.success is True
        assert outcome.output == 5
        assert recorder.pending_count == 2

        state["locked"] = False
        assert recorder.flush() == 0
        assert runs.get(outcome.run_id).status is RunStatus.SUCCESS
