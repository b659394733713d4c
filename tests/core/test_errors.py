"""Tests for the relay error hierarchy."""

from relay.core.errors import (
    CapabilityCallError,
    CapabilityNotFoundError,
    CapabilityTimeoutError,
    CapabilityUnavailableError,
    ErrorCategory,
    ParameterMismatchError,
    QueueUnavailableError,
    RelayError,
    StepExecutionError,
    TenantInactiveError,
    UnresolvedVariableError,
    WorkflowNotFoundError,
    error_message,
    is_retryable,
)


class TestErrorMessages:
    """Messages are what runs record, so their wording is part of the contract."""

    def test_workflow_not_found(self):
        assert WorkflowNotFoundError("wf-9").message == "Workflow not found: wf-9"

    def test_tenant_inactive(self):
        err = TenantInactiveError("org-1")
        assert err.message == "Cannot execute workflow: client organization is inactive"
        assert err.context.tenant_id == "org-1"

    def test_parameter_mismatch_lists_both_sides(self):
        err = ParameterMismatchError("utilities.math.add", ["a", "b"], ["x"])
        assert "Function expects [a, b]" in err.message
        assert "workflow provided [x]" in err.message

    def test_call_error_prefix(self):
        err = CapabilityCallError("ai.openai.chat", "boom")
        assert err.message == "Failed to execute ai.openai.chat: boom"

    def test_timeout_is_call_error(self):
        err = CapabilityTimeoutError("ai.openai.chat", 2.5)
        assert isinstance(err, CapabilityCallError)
        assert "timed out after 2.5s" in err.message

    def test_unavailable_mentions_retry(self):
        err = CapabilityUnavailableError("ai.openai.chat", retry_in=4.0)
        assert "circuit open, retry in 4.0s" in err.message

    def test_unresolved_variable_shows_placeholder(self):
        assert UnresolvedVariableError("user.name").message == "Unresolved variable: {{user.name}}"

    def test_step_error_carries_step_id(self):
        err = StepExecutionError("s2", "bad input")
        assert err.step_id == "s2"
        assert err.context.step_id == "s2"


class TestCategoriesAndRetry:
    def test_default_categories(self):
        assert CapabilityNotFoundError("a.b.c").category is ErrorCategory.CAPABILITY
        assert QueueUnavailableError("down").category is ErrorCategory.QUEUE

    def test_retryable_flags(self):
        assert is_retryable(CapabilityTimeoutError("a.b.c", 1)) is True
        assert is_retryable(CapabilityNotFoundError("a.b.c")) is False
        assert is_retryable(ConnectionError("reset")) is True
        assert is_retryable(ValueError("nope")) is False

    def test_cause_is_chained(self):
        cause = KeyError("x")
        err = RelayError("wrapped", cause=cause)
        assert err.__cause__ is cause

    def test_with_context_puts_unknown_keys_in_metadata(self):
        err = RelayError("x").with_context(run_id="r1", attempt=2)
        assert err.context.run_id == "r1"
        assert err.context.metadata["attempt"] == 2


class TestErrorMessageHelper:
    def test_relay_error_uses_message(self):
        assert error_message(WorkflowNotFoundError("wf")) == "Workflow not found: wf"

    def test_plain_exception_uses_str(self):
        assert error_message(ValueError("bad value")) == "bad value"

    def test_empty_exception_falls_back_to_class_name(self):
        assert error_message(KeyError()) == "KeyError"
