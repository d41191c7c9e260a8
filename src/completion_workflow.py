"""
Signed completion of a pallet ("Ware ausbuchen").

A worker scans the QR code on a pallet label, confirms "Ja", and this
workflow runs:

    PENDING_VERIFY --bad signature--> REJECTED
          |
          v
    completion log has record? --yes--> ALREADY_DONE (original timestamp)
          |
          v
       CLOSING --close failed--> CLOSE_FAILED (nothing recorded)
          |
          v
    record completion (first write wins)
          |
          +--no label known--> CLOSED_NO_LABEL
          +--label known-----> CLOSED_WITH_LIST (remaining pallets, sorted)

The remote close happens before the log write. If the process dies between
the two, Todoist has the pallet closed but the log does not; the next scan
then closes again (a no-op remotely) and records a later date.

Every operation returns a CompletionOutcome. Errors travel inside the
outcome (``outcome.error``) instead of being raised, so the web layer picks
the page from ``outcome.state`` alone.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Tuple

from completion_store import CompletionStore, format_completed_at
from exceptions import AuthorizationError, PalletLabelsError, RemoteServiceError
from list_sorter import sort_tasks
from logger import get_logger, set_label_context, set_task_context
from signature import SignatureVerifier
from task_gateway import Task, TaskGateway

logger = get_logger(__name__)


class WorkflowState(Enum):
    PENDING_VERIFY = "pending_verify"
    REJECTED = "rejected"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    DECLINED = "declined"
    ALREADY_DONE = "already_done"
    CLOSING = "closing"
    CLOSE_FAILED = "close_failed"
    CLOSED_NO_LABEL = "closed_no_label"
    CLOSED_WITH_LIST = "closed_with_list"


TERMINAL_STATES = frozenset({
    WorkflowState.REJECTED,
    WorkflowState.AWAITING_CONFIRMATION,
    WorkflowState.DECLINED,
    WorkflowState.ALREADY_DONE,
    WorkflowState.CLOSE_FAILED,
    WorkflowState.CLOSED_NO_LABEL,
    WorkflowState.CLOSED_WITH_LIST,
})


@dataclass(frozen=True)
class CompletionOutcome:
    """Result of one workflow call."""

    state: WorkflowState
    task_id: str
    completed_at: Optional[str] = None
    label: Optional[str] = None
    remaining: tuple = ()
    remaining_failed: bool = False
    error: Optional[PalletLabelsError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def closed(self) -> bool:
        return self.state in (WorkflowState.CLOSED_NO_LABEL, WorkflowState.CLOSED_WITH_LIST)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CompletionWorkflow:
    """
    Orchestrates signature check, completion log and Todoist close.

    Args:
        verifier: Signs/verifies task ids
        store: Completion log
        gateway: Todoist gateway (anything with get_task, close_task and
                 list_open_by_label)
        clock: Returns the current aware datetime; injectable for tests
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        store: CompletionStore,
        gateway: TaskGateway,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.verifier = verifier
        self.store = store
        self.gateway = gateway
        self.clock = clock

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def inspect(self, task_id: str, signature: Optional[str]) -> CompletionOutcome:
        """Decide what the scan page shows before the worker confirms."""
        task_id = str(task_id)
        set_task_context(task_id)

        rejected = self._verify(task_id, signature)
        if rejected:
            return rejected

        already = self._already_done(task_id)
        if already:
            return already

        logger.debug(f"Task {task_id} awaiting confirmation")
        return CompletionOutcome(WorkflowState.AWAITING_CONFIRMATION, task_id)

    def decline(self, task_id: str, signature: Optional[str]) -> CompletionOutcome:
        """Worker answered "Nein"; nothing is changed."""
        task_id = str(task_id)
        set_task_context(task_id)

        rejected = self._verify(task_id, signature)
        if rejected:
            return rejected

        logger.info(f"Completion of task {task_id} declined by worker")
        return CompletionOutcome(WorkflowState.DECLINED, task_id)

    def complete(
        self,
        task_id: str,
        signature: Optional[str],
        label: Optional[str] = None,
        include_remaining: bool = True,
    ) -> CompletionOutcome:
        """
        Close the task remotely and record the completion.

        Args:
            task_id: Todoist task id from the URL
            signature: ``sig`` query parameter from the URL
            label: Commission label when already known; otherwise it is
                   looked up from the task (best effort)
            include_remaining: False for the legacy /complete route, which
                   neither looks up the label nor lists remaining pallets
        """
        task_id = str(task_id)
        set_task_context(task_id)

        rejected = self._verify(task_id, signature)
        if rejected:
            return rejected

        already = self._already_done(task_id)
        if already:
            return already

        logger.debug(f"Task {task_id}: {WorkflowState.CLOSING.value}")

        if include_remaining and not label:
            label = self._lookup_label(task_id)
        if label:
            set_label_context(label)

        try:
            self.gateway.close_task(task_id)
        except RemoteServiceError as e:
            logger.error(f"Closing task {task_id} failed, nothing recorded: {e}")
            return CompletionOutcome(WorkflowState.CLOSE_FAILED, task_id, label=label, error=e)

        completed_at = self.store.set_if_absent(task_id, format_completed_at(self.clock()))
        logger.info(f"Task {task_id} closed and recorded at {completed_at}")

        if not include_remaining or not label:
            return CompletionOutcome(
                WorkflowState.CLOSED_NO_LABEL, task_id, completed_at=completed_at, label=label
            )

        remaining, failed = self._remaining_for(label, exclude=task_id)
        return CompletionOutcome(
            WorkflowState.CLOSED_WITH_LIST,
            task_id,
            completed_at=completed_at,
            label=label,
            remaining=tuple(remaining),
            remaining_failed=failed,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _verify(self, task_id: str, signature: Optional[str]) -> Optional[CompletionOutcome]:
        if self.verifier.verify(task_id, signature):
            return None

        logger.warning(f"Rejected request for task {task_id}: invalid signature")
        return CompletionOutcome(
            WorkflowState.REJECTED,
            task_id,
            error=AuthorizationError("Ungültige Signatur."),
        )

    def _already_done(self, task_id: str) -> Optional[CompletionOutcome]:
        completed_at = self.store.get(task_id)
        if completed_at is None:
            return None

        logger.info(f"Task {task_id} already completed at {completed_at}")
        return CompletionOutcome(WorkflowState.ALREADY_DONE, task_id, completed_at=completed_at)

    def _lookup_label(self, task_id: str) -> Optional[str]:
        try:
            task = self.gateway.get_task(task_id)
        except RemoteServiceError as e:
            logger.warning(f"Could not load task {task_id}, commission label unknown: {e}")
            return None
        return task.commission_label

    def _remaining_for(self, label: str, exclude: str) -> Tuple[List[Task], bool]:
        try:
            tasks = self.gateway.list_open_by_label(label)
        except RemoteServiceError as e:
            logger.error(f"Could not load remaining pallets for {label}: {e}")
            return [], True

        remaining = sort_tasks(t for t in tasks if t.id != exclude)
        logger.info(f"{len(remaining)} pallet(s) left for commission {label}")
        return remaining, False
