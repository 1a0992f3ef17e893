"""End-to-end workflow engine behaviour."""

import asyncio

import pytest

from stagecraft.exceptions import (
    BlockingFeedbackError,
    GateNotSatisfiedError,
    HookExecutionError,
    InvalidTransitionError,
    WorkflowNotActiveError,
)
from stagecraft.persistence import InMemoryWorkflowRepository, SQLiteWorkflowRepository
from stagecraft.workflow import TemplateStore, WorkflowManager
from stagecraft.workflow.collaborators import CommandResult
from stagecraft.workflow.models import CommandAction, CommitMetadata, FeedbackItem, PostMessageAction
from stagecraft.workflow.templates import parse_template


class FakeRunner:
    def __init__(self, failing=()):
        self.commands = []
        self.failing = set(failing)

    async def __call__(self, command, cwd):
        self.commands.append(command)
        return CommandResult(exit_code=1 if command in self.failing else 0)


def _manager(tmp_path, **kwargs):
    kwargs.setdefault("command_runner", FakeRunner())
    return WorkflowManager(
        project_root=tmp_path,
        repository=InMemoryWorkflowRepository(),
        template_store=TemplateStore(tmp_path),
        **kwargs,
    )


def _template(*stages, name="custom"):
    return parse_template({"name": name, "stages": list(stages)})


def _auto(name, **extra):
    return {"name": name, "type": "implementation", "gate": {"type": "auto"}, **extra}


@pytest.mark.asyncio
async def test_create_standard_workflow(tmp_path):
    manager = _manager(tmp_path)
    workflow = await manager.create("CR-1", "standard")

    assert workflow.id.startswith("WF-")
    assert workflow.request_id == "CR-1"
    assert workflow.status == "active"
    assert workflow.current_stage == 0
    assert len(workflow.stages) == 5
    assert [s.status for s in workflow.stages] == ["active"] + ["pending"] * 4
    assert workflow.stages[0].gate.type == "human_approval"
    assert not workflow.stages[0].gate.satisfied
    assert workflow.stages[0].started_at is not None

    assert [m.content for m in workflow.messages] == [
        "Approval Required: CR created. Proceed to design?"
    ]
    assert workflow.messages[0].metadata["type"] == "gate_prompt"

    entries = await manager.list()
    assert [e.id for e in entries] == [workflow.id]


@pytest.mark.asyncio
async def test_auto_gates_are_satisfied_on_create(tmp_path):
    manager = _manager(tmp_path)
    workflow = await manager.create("DOC-1", "documentation")
    assert workflow.stages[0].gate.satisfied
    assert workflow.stages[0].gate.satisfied_by == "system"
    assert workflow.messages == []


@pytest.mark.asyncio
async def test_advance_with_unsatisfied_gate_changes_nothing(tmp_path):
    manager = _manager(tmp_path)
    workflow = await manager.create("CR-1", "standard")

    with pytest.raises(GateNotSatisfiedError):
        await manager.advance(workflow.id)
    assert await manager.get(workflow.id) == workflow


@pytest.mark.asyncio
async def test_approve_then_advance(tmp_path):
    manager = _manager(tmp_path)
    workflow = await manager.create("CR-1", "standard")

    with pytest.raises(InvalidTransitionError, match="only allowed for current stage 0"):
        await manager.satisfy_gate(workflow.id, 1, "alice")

    approved = await manager.satisfy_gate(workflow.id, 0, "alice")
    assert approved.stages[0].status == "awaiting_gate"
    assert approved.stages[0].gate.satisfied_by == "alice"

    advanced = await manager.advance(workflow.id)
    assert advanced.current_stage == 1
    assert advanced.stages[0].status == "completed"
    assert advanced.stages[0].completed_at is not None
    assert advanced.stages[1].status == "active"
    assert advanced.messages[-1].content == (
        "Approval Required: Design complete. Proceed to implementation?"
    )
    assert advanced.messages[-1].stage_index == 1


@pytest.mark.asyncio
async def test_advancing_through_every_stage_completes(tmp_path):
    manager = _manager(tmp_path)
    workflow = await manager.create("CR-2", _template(_auto("a"), _auto("b")))

    first = await manager.advance(workflow.id)
    assert first.current_stage == 1
    assert first.stages[1].gate.satisfied

    done = await manager.advance(workflow.id)
    assert done.status == "completed"
    assert done.current_stage == len(done.stages)
    assert done.active_stage is None

    with pytest.raises(WorkflowNotActiveError):
        await manager.advance(workflow.id)


@pytest.mark.asyncio
async def test_verification_gate_runs_commands(tmp_path):
    runner = FakeRunner(failing={"pytest"})
    manager = _manager(tmp_path, command_runner=runner)
    template = _template(
        {
            "name": "verify",
            "type": "verification",
            "gate": {"type": "verification_pass", "commands": ["ruff", "pytest"]},
        },
        _auto("done"),
    )
    workflow = await manager.create("CR-3", template)

    with pytest.raises(GateNotSatisfiedError, match="Verification command failed: pytest"):
        await manager.advance(workflow.id)
    assert runner.commands == ["ruff", "pytest"]
    assert (await manager.get(workflow.id)).current_stage == 0


@pytest.mark.asyncio
async def test_unresolved_blockers_prevent_advance(tmp_path):
    feedback = [
        FeedbackItem(id="FB-1", workflow_id="x", type="blocker", status="pending"),
        FeedbackItem(id="FB-2", workflow_id="x", type="blocker", status="resolved"),
        FeedbackItem(id="FB-3", workflow_id="x", type="suggestion"),
    ]

    async def source(workflow_id):
        return feedback

    manager = _manager(tmp_path, feedback_source=source)
    workflow = await manager.create("CR-4", _template(_auto("a"), _auto("b")))

    with pytest.raises(BlockingFeedbackError) as exc_info:
        await manager.advance(workflow.id)
    assert exc_info.value.blocker_ids == ["FB-1"]
    stored = await manager.get(workflow.id)
    assert stored.blocking_feedback_ids == ["FB-1"]
    assert stored.current_stage == 0

    feedback[0] = FeedbackItem(id="FB-1", workflow_id="x", type="blocker", status="resolved")
    advanced = await manager.advance(workflow.id)
    assert advanced.current_stage == 1
    assert advanced.blocking_feedback_ids == []


@pytest.mark.asyncio
async def test_blocking_hook_failure_keeps_stage_and_records_results(tmp_path):
    runner = FakeRunner(failing={"deploy"})
    manager = _manager(tmp_path, command_runner=runner)
    template = _template(
        _auto(
            "build",
            hooks={
                "on_exit": [
                    {"type": "post_message", "content": "Leaving {{workflowId}}"},
                    {"type": "command", "command": "deploy"},
                    {"type": "command", "command": "notify"},
                ]
            },
        ),
        _auto("after"),
    )
    workflow = await manager.create("CR-5", template)

    with pytest.raises(HookExecutionError):
        await manager.advance(workflow.id)
    assert runner.commands == ["deploy"]

    stored = await manager.get(workflow.id)
    assert stored.current_stage == 0
    assert stored.stages[0].status == "active"
    assert stored.stages[1].status == "pending"
    contents = [m.content for m in stored.messages]
    assert contents == [
        "Hook on_exit for build: post_message:ok, command:fail",
        f"Leaving {workflow.id}",
    ]
    assert stored.messages[0].metadata["type"] == "hook_results"


@pytest.mark.asyncio
async def test_hooks_run_on_exit_and_enter(tmp_path):
    runner = FakeRunner()
    manager = _manager(tmp_path, command_runner=runner)
    template = _template(
        _auto("one", hooks={"on_exit": [{"type": "command", "command": "exit-one"}]}),
        _auto("two", hooks={"on_enter": [{"type": "command", "command": "enter-two"}]}),
    )
    workflow = await manager.create("CR-6", template)
    advanced = await manager.advance(workflow.id)

    assert runner.commands == ["exit-one", "enter-two"]
    assert [m.content for m in advanced.messages] == [
        "Hook on_exit for one: command:ok",
        "Hook on_enter for two: command:ok",
    ]


@pytest.mark.asyncio
async def test_post_commit_gate_creates_audit_chain(tmp_path):
    requests = []

    async def creator(request):
        requests.append(request)
        return "AUDIT-1"

    manager = _manager(tmp_path, audit_chain_creator=creator)
    template = _template(
        {"name": "commit", "type": "implementation", "gate": {"type": "post_commit"}},
        _auto("done"),
    )
    workflow = await manager.create("CR-7", template)

    with pytest.raises(GateNotSatisfiedError):
        await manager.advance(workflow.id)

    commit = CommitMetadata(sha="abc123", message="feat: x", author="dana")
    attached = await manager.attach_commit(workflow.id, 0, commit)
    assert attached.stages[0].gate.satisfied_by == "dana"
    with pytest.raises(InvalidTransitionError, match="already satisfied"):
        await manager.attach_commit(workflow.id, 0, commit)

    await manager.advance(workflow.id)
    await manager.wait_for_background_tasks()

    assert len(requests) == 1
    assert requests[0].commit.sha == "abc123"
    stored = await manager.get(workflow.id)
    assert stored.stages[0].gate.audit_chain_id == "AUDIT-1"
    assert stored.current_stage == 1


@pytest.mark.asyncio
async def test_agent_triggered_gate_prompt(tmp_path):
    manager = _manager(tmp_path)
    template = _template(
        {
            "name": "review",
            "type": "review",
            "gate": {"type": "human_approval", "prompt": "Ship it?", "agent_triggered": True},
        }
    )
    workflow = await manager.create("CR-8", template)
    assert workflow.messages == []

    prompted = await manager.trigger_gate_prompt(workflow.id, 0)
    assert [m.content for m in prompted.messages] == ["Approval Required: Ship it?"]

    other = await manager.create("CR-9", "standard")
    with pytest.raises(InvalidTransitionError):
        await manager.trigger_gate_prompt(other.id, 0)


@pytest.mark.asyncio
async def test_discard_and_status(tmp_path):
    manager = _manager(tmp_path)
    workflow = await manager.create("CR-10", "standard")

    with pytest.raises(InvalidTransitionError, match="Discard reason is required"):
        await manager.discard(workflow.id, "   ")

    paused = await manager.update_status(workflow.id, "paused")
    assert paused.messages[-1].content == "Status changed from active to paused"

    discarded = await manager.discard(workflow.id, "Superseded by CR-11")
    assert discarded.status == "discarded"
    assert discarded.messages[-1].content == "Superseded by CR-11"
    assert discarded.messages[-1].metadata == {"type": "discard_reason"}

    with pytest.raises(WorkflowNotActiveError):
        await manager.advance(workflow.id)
    assert [e.id for e in await manager.list("discarded")] == [workflow.id]
    assert await manager.list("active") == []


@pytest.mark.asyncio
async def test_status_cannot_leave_terminal_state(tmp_path):
    manager = _manager(tmp_path)
    discarded = await manager.create("CR-13", "documentation")
    await manager.discard(discarded.id, "Out of scope")
    with pytest.raises(InvalidTransitionError, match="is discarded and cannot change to active"):
        await manager.update_status(discarded.id, "active")
    assert (await manager.get(discarded.id)).status == "discarded"

    finished = await manager.create("CR-14", _template(_auto("only")))
    finished = await manager.advance(finished.id)
    assert finished.status == "completed"
    with pytest.raises(InvalidTransitionError):
        await manager.update_status(finished.id, "active")
    stored = await manager.get(finished.id)
    assert stored.status == "completed"
    assert stored.current_stage == len(stored.stages)


@pytest.mark.asyncio
async def test_completed_status_requires_passing_last_stage(tmp_path):
    manager = _manager(tmp_path)
    workflow = await manager.create("CR-15", "standard")
    with pytest.raises(InvalidTransitionError, match="cannot complete before its last stage"):
        await manager.update_status(workflow.id, "completed")
    assert (await manager.get(workflow.id)).status == "active"

    resumed = await manager.update_status(workflow.id, "paused")
    resumed = await manager.update_status(workflow.id, "active")
    assert resumed.status == "active"


@pytest.mark.asyncio
async def test_add_message_and_lifecycle_hooks(tmp_path):
    runner = FakeRunner()
    manager = _manager(tmp_path, command_runner=runner)
    workflow = await manager.create("CR-12", "standard")

    message = await manager.add_message(workflow.id, "impl", "Working on it")
    assert message.stage_index == 0
    with pytest.raises(InvalidTransitionError):
        await manager.add_message(workflow.id, "impl", "nope", stage_index=9)

    run = await manager.run_lifecycle_hook(
        workflow.id,
        "on_task_complete",
        [
            CommandAction(command="notify {{taskId}}"),
            PostMessageAction(content="Task {{taskId}} done", role="control"),
        ],
        task_id="T1",
        chain_id="C1",
    )
    assert run.succeeded
    assert runner.commands == ["notify T1"]

    stored = await manager.get(workflow.id)
    assert [m.content for m in stored.messages[-3:]] == [
        "Working on it",
        "Hook on_task_complete for request: command:ok, post_message:ok",
        "Task T1 done",
    ]
    assert stored.messages[-1].role == "control"


@pytest.mark.asyncio
@pytest.mark.parametrize("backend", ["inmemory", "sqlite"])
async def test_concurrent_operations_on_one_workflow_are_serialized(tmp_path, backend):
    repository = (
        InMemoryWorkflowRepository()
        if backend == "inmemory"
        else SQLiteWorkflowRepository(tmp_path / "wf.db")
    )
    manager = WorkflowManager(
        project_root=tmp_path,
        repository=repository,
        template_store=TemplateStore(tmp_path),
        command_runner=FakeRunner(),
    )
    template = _template(
        _auto("plan"),
        {"name": "review", "type": "review", "gate": {"type": "human_approval", "prompt": "OK?"}},
        _auto("ship"),
    )
    workflow = await manager.create("CR-20", template)

    await asyncio.gather(
        manager.advance(workflow.id),
        manager.add_message(workflow.id, "impl", "first"),
        manager.add_message(workflow.id, "control", "second"),
        manager.satisfy_gate(workflow.id, 1, "alice"),
        manager.add_message(workflow.id, "human", "third"),
    )
    final = await manager.advance(workflow.id)

    contents = [m.content for m in final.messages]
    for expected in ("first", "second", "third", "Approval Required: OK?"):
        assert expected in contents
    assert final.current_stage == 2
    assert [s.status for s in final.stages] == ["completed", "completed", "active"]
    assert final.stages[1].gate.satisfied_by == "alice"
    assert await manager.get(workflow.id) == final
    assert len(manager._locks) == 0
