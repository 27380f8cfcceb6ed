"""Operator-facing view of where a task is in its workflow."""

from trustdesk.schemas.records import Task, TaskStatus
from trustdesk.schemas.tasks import ProgressStep, TaskProgress, WorkflowAction, WorkflowStatus

PROGRESS_STEPS = ("Task Created", "Documents Generated", "Documents Signed", "Task Completed")

FINALIZE = WorkflowAction(action="finalize", label="Finalize Task", description="Lock the draft and generate documents")
DISCARD = WorkflowAction(action="discard", label="Discard Draft", description="Delete the draft task")
GENERATE = WorkflowAction(action="generate", label="Generate Documents", description="Create documents from templates")
DOWNLOAD = WorkflowAction(action="download", label="Download Documents", description="Download generated documents for signing")
UPLOAD_SIGNED = WorkflowAction(action="upload_signed", label="Upload Signed Documents", description="Upload signed versions of documents")
COMPLETE = WorkflowAction(action="complete", label="Complete Task", description="Mark task as completed")
RETRY = WorkflowAction(action="retry", label="Retry Generation", description="Regenerate the documents that failed")


def describe_workflow(task: Task, has_signed: bool = False) -> WorkflowStatus:
    """Actions available for ``task``.

    Args:
        task: The task to describe
        has_signed: Whether every generated document has a signed upload
    """
    status = WorkflowStatus(current_status=task.status)

    if task.status == TaskStatus.DRAFT:
        status.can_finalize = bool(task.template_ids)
        if not task.template_ids:
            status.required_actions.append("Select at least one template")
        status.available_actions.extend([FINALIZE, DISCARD] if status.can_finalize else [DISCARD])

    elif task.status == TaskStatus.IN_PROGRESS:
        status.can_generate = True
        status.required_actions.append("Generate documents to proceed")
        status.available_actions.append(GENERATE)

    elif task.status == TaskStatus.AWAITING:
        if task.successful_documents:
            status.can_upload_signed = True
            status.available_actions.extend([DOWNLOAD, UPLOAD_SIGNED])
            if has_signed:
                status.can_complete = True
                status.available_actions.append(COMPLETE)
            else:
                status.required_actions.append("Upload signed documents to complete")

        if task.failed_documents or len(task.generated_documents) < len(task.template_ids):
            status.can_retry = True
            status.required_actions.append("Retry generation for the failed documents")
            status.available_actions.append(RETRY)

    elif task.status == TaskStatus.COMPLETED:
        status.available_actions.append(DOWNLOAD)

    return status


def task_progress(task: Task, has_signed: bool = False) -> TaskProgress:
    """Four-step progress summary for ``task``."""
    steps = [ProgressStep(name=name) for name in PROGRESS_STEPS]
    steps[0].completed = True
    completed = 1
    current = 1

    if task.status == TaskStatus.DRAFT:
        completed = 0
        steps[0].completed = False
        steps[0].current = True

    elif task.status == TaskStatus.IN_PROGRESS:
        steps[1].current = True
        current = 2

    elif task.status == TaskStatus.AWAITING:
        if task.successful_documents:
            steps[1].completed = True
            completed = 2
            if has_signed:
                steps[2].completed = True
                steps[3].current = True
                completed, current = 3, 4
            else:
                steps[2].current = True
                current = 3
        else:
            steps[1].current = True
            current = 2

    elif task.status == TaskStatus.COMPLETED:
        for step in steps:
            step.completed = True
        completed = current = len(steps)

    return TaskProgress(
        current_step=current,
        total_steps=len(steps),
        completed_steps=completed,
        percentage=round(completed / len(steps) * 100),
        steps=steps,
    )
