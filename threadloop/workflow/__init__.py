# Workflow loop: one model turn per iteration, parallel delegation with result injection,
# approval suspension and resume.

from .delegation import (
    DelegateResult,
    SubtaskRunner,
    echo_subtask_runner,
    fan_out_delegates,
    inject_subtask_results,
    make_subagent_runner,
)
from .loop import (
    WorkflowRun,
    WorkflowResult,
    RunRegistry,
    create_workflow_run,
    drive_workflow,
    run_workflow,
    resume_workflow,
    scratchpad_reader,
    get_run_registry,
    CONTINUATION_PROMPT,
)

__all__ = [
    "DelegateResult",
    "SubtaskRunner",
    "echo_subtask_runner",
    "fan_out_delegates",
    "inject_subtask_results",
    "make_subagent_runner",
    "WorkflowRun",
    "WorkflowResult",
    "RunRegistry",
    "create_workflow_run",
    "drive_workflow",
    "run_workflow",
    "resume_workflow",
    "scratchpad_reader",
    "get_run_registry",
    "CONTINUATION_PROMPT",
]
