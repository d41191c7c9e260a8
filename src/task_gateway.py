"""
Gateway to the Todoist REST API.

Every pallet is one Todoist task; the commission (delivery group) is a label
on the task. This module wraps the handful of calls the app needs:

- create_task: one task per printed pallet label
- close_task: the pallet was scanned and confirmed as loaded
- get_task: recover the commission label of a scanned pallet
- list_open_by_label: what is still left of this commission
- list_project_tasks: all open pallets, for the load-list views
- ensure_label: get-or-create a label id, cached in an injected LabelCache

Any transport error or non-2xx answer is raised as RemoteServiceError. There
are no retries here; callers decide whether a failure is fatal.
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import requests

from exceptions import RemoteServiceError
from logger import get_logger

logger = get_logger(__name__)

DEFAULT_API_BASE_URL = "https://api.todoist.com/rest/v2"


@dataclass(frozen=True)
class Task:
    """A Todoist task as far as this app cares about it."""

    id: str
    content: str
    priority: int = 1
    labels: Tuple[str, ...] = ()
    is_completed: bool = False
    url: str = ""
    project_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "Task":
        labels = data.get("labels") or ()
        project_id = data.get("project_id")
        return cls(
            id=str(data["id"]),
            content=str(data.get("content") or ""),
            priority=int(data.get("priority") or 1),
            labels=tuple(str(name) for name in labels),
            is_completed=bool(data.get("is_completed", False)),
            url=str(data.get("url") or ""),
            project_id=None if project_id is None else str(project_id),
        )

    @property
    def commission_label(self) -> Optional[str]:
        """First label of the task; pallets carry exactly one commission label."""
        return self.labels[0] if self.labels else None

    def has_label(self, label: str) -> bool:
        return label in self.labels


class LabelCache:
    """Thread-safe label name -> id mapping, owned by whoever builds the gateway."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._ids: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, name: str) -> Optional[str]:
        with self._lock:
            return self._ids.get(name)

    def put(self, name: str, label_id: str) -> None:
        with self._lock:
            self._ids[name] = label_id

    def get_or_create(self, name: str, factory: Callable[[str], str]) -> str:
        """
        Return the cached id, or call factory(name) and cache its result.

        The factory runs outside the lock; two concurrent misses may both call
        it, and the first stored id wins.
        """
        cached = self.get(name)
        if cached is not None:
            return cached

        label_id = factory(name)
        with self._lock:
            return self._ids.setdefault(name, label_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)


class TaskGateway:
    """
    Authenticated Todoist client.

    Args:
        token: Todoist API token (Bearer)
        project_id: Project receiving the pallet tasks
        label_cache: Cache for label ids; a fresh one is created when omitted
        base_url: API root, without trailing slash
        timeout: Per-request timeout in seconds
        session: requests.Session to use (tests inject a mock)
    """

    def __init__(
        self,
        token: str,
        project_id: str,
        label_cache: Optional[LabelCache] = None,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.project_id = str(project_id)
        self.label_cache = label_cache if label_cache is not None else LabelCache()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {token}"})

    @classmethod
    def from_config(cls, config, label_cache: Optional[LabelCache] = None) -> "TaskGateway":
        return cls(
            token=config.todoist_token,
            project_id=config.project_id,
            label_cache=label_cache,
            base_url=config.api_base_url,
            timeout=config.request_timeout,
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"Todoist {method} {path} failed: {e}")
            raise RemoteServiceError(f"Todoist nicht erreichbar: {e}", detail=str(e)) from e

        if not response.ok:
            body = response.text[:500]
            logger.error(f"Todoist {method} {path} returned {response.status_code}: {body}")
            raise RemoteServiceError(
                f"Todoist error {response.status_code}",
                status_code=response.status_code,
                detail=body,
            )
        return response

    def _json(self, response: requests.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteServiceError(
                "Todoist returned invalid JSON",
                status_code=response.status_code,
                detail=response.text[:500],
            ) from e

    def _unexpected(self, response: requests.Response, what: str) -> RemoteServiceError:
        body = response.text[:500]
        logger.error(f"Todoist returned an unexpected {what}: {body}")
        return RemoteServiceError(
            f"Todoist returned an unexpected {what}",
            status_code=response.status_code,
            detail=body,
        )

    def _task(self, response: requests.Response, payload: Any) -> Task:
        """Build a Task from one API object; anything without an id is a remote error."""
        if not isinstance(payload, Mapping) or payload.get("id") is None:
            raise self._unexpected(response, "task payload")
        try:
            return Task.from_api(payload)
        except (TypeError, ValueError) as e:
            raise self._unexpected(response, "task payload") from e

    def _task_list(self, response: requests.Response) -> List[Task]:
        payload = self._json(response)
        # REST v2 returns a bare list, the unified v1 API wraps it in "results"
        if isinstance(payload, dict):
            payload = payload.get("results", [])
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise self._unexpected(response, "task list")
        return [self._task(response, item) for item in payload]

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, content: str, labels: Iterable[str] = ()) -> Task:
        """Create a task in the configured project; unknown labels are auto-created."""
        payload: Dict[str, Any] = {"content": content}

        if self.project_id.isdigit():
            payload["project_id"] = self.project_id
        else:
            logger.warning(
                f"PROJECT_ID is not numeric ({self.project_id!r}), task goes to the inbox"
            )

        label_names = [name for name in labels if name]
        if label_names:
            payload["labels"] = label_names

        response = self._request("POST", "/tasks", json=payload)
        task = self._task(response, self._json(response))
        logger.info(f"Created task {task.id}: {content}")
        return task

    def close_task(self, task_id: Any) -> None:
        self._request("POST", f"/tasks/{task_id}/close")
        logger.info(f"Closed task {task_id}")

    def get_task(self, task_id: Any) -> Task:
        response = self._request("GET", f"/tasks/{task_id}")
        return self._task(response, self._json(response))

    def list_open_by_label(self, label: str) -> List[Task]:
        """
        Open tasks carrying ``label``.

        /tasks only returns open tasks; the label is checked again locally so
        labels with filter syntax characters cannot widen the result.
        """
        response = self._request("GET", "/tasks", params={"filter": f"@{label}"})
        tasks = self._task_list(response)
        return [t for t in tasks if not t.is_completed and t.has_label(label)]

    def list_project_tasks(self) -> List[Task]:
        """All open tasks of the configured project."""
        response = self._request("GET", "/tasks", params={"project_id": self.project_id})
        return [t for t in self._task_list(response) if not t.is_completed]

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    def ensure_label(self, name: str) -> str:
        """Return the id of the personal label ``name``, creating it if needed."""
        return self.label_cache.get_or_create(name, self._find_or_create_label)

    def _find_or_create_label(self, name: str) -> str:
        labels = self._json(self._request("GET", "/labels")) or []
        if isinstance(labels, dict):
            labels = labels.get("results", [])

        for label in labels:
            if label.get("name") == name:
                return str(label["id"])

        created = self._json(self._request("POST", "/labels", json={"name": name}))
        logger.info(f"Created label {name!r} ({created['id']})")
        return str(created["id"])
