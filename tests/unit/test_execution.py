"""Tests for the execution context state machine."""

from __future__ import annotations

import pytest

from codeh.errors import InvalidTransitionError
from codeh.types.execution import ExecutionContext, ExecutionStatus
from codeh.types.messages import ToolCall
from codeh.types.tools import ToolExecutionResult


@pytest.fixture
def ctx() -> ExecutionContext:
    return ExecutionContext.create(ToolCall(id="c1", name="echo", arguments={"text": "hi"}))


class TestTransitions:
    def test_starts_pending(self, ctx):
        assert ctx.is_pending()
        assert not ctx.is_finished()
        assert ctx.id.startswith("tool_ctx_")

    def test_happy_path(self, ctx):
        awaiting = ctx.with_status(ExecutionStatus.AWAITING_PERMISSION)
        approved = awaiting.with_permission_granted()
        running = approved.with_execution_started()
        done = running.with_result(ToolExecutionResult.ok("hi"))

        assert awaiting.is_awaiting_permission()
        assert approved.is_approved() and approved.permission_granted_at is not None
        assert running.is_executing() and running.execution_started_at is not None
        assert done.is_completed() and done.is_finished()
        assert done.execution_duration() is not None
        assert done.execution_duration() >= 0

    def test_transitions_return_new_instances(self, ctx):
        approved = ctx.with_permission_granted()
        assert ctx.is_pending()
        assert approved is not ctx
        assert approved.id == ctx.id

    def test_failed_result_moves_to_failed(self, ctx):
        running = ctx.with_permission_granted().with_execution_started()
        failed = running.with_result(ToolExecutionResult.fail("boom"))
        assert failed.is_failed()
        assert failed.error == "boom"

    def test_rejection_records_reason(self, ctx):
        awaiting = ctx.with_status(ExecutionStatus.AWAITING_PERMISSION)
        rejected = awaiting.with_permission_rejected("no")
        assert rejected.is_rejected() and rejected.is_finished()
        assert rejected.metadata["rejection_reason"] == "no"

    def test_cancel_before_start(self, ctx):
        failed = ctx.with_permission_granted().with_error("Cancelled")
        assert failed.is_failed()
        assert failed.execution_duration() is None

    @pytest.mark.parametrize("move", [
        lambda c: c.with_execution_started(),
        lambda c: c.with_permission_rejected(),
        lambda c: c.with_result(ToolExecutionResult.ok("x")),
    ])
    def test_illegal_transitions_from_pending(self, ctx, move):
        with pytest.raises(InvalidTransitionError):
            move(ctx)

    def test_terminal_states_are_final(self, ctx):
        done = ctx.with_permission_granted().with_execution_started().with_result(
            ToolExecutionResult.ok("x"),
        )
        with pytest.raises(InvalidTransitionError):
            done.with_execution_started()
        with pytest.raises(InvalidTransitionError):
            done.with_error("late")

    def test_metadata_updates_do_not_change_status(self, ctx):
        tagged = ctx.with_metadata(attempts=2)
        assert tagged.is_pending()
        assert tagged.metadata["attempts"] == 2
        assert "created_at" in tagged.metadata

    def test_to_dict(self, ctx):
        data = ctx.with_permission_granted().to_dict()
        assert data["status"] == "approved"
        assert data["tool_call"]["name"] == "echo"
        assert data["execution_started_at"] is None
