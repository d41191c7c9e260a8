"""
Pytest configuration file for Pallet Labels tests.

Puts the 'src' directory on sys.path so tests import modules the way the
server does, and provides shared fakes for the Todoist gateway.
"""

import sys
from pathlib import Path
from typing import Dict, List, Optional


# Get the repository root directory (parent of tests directory)
repo_root = Path(__file__).parent.parent

# Add src directory to sys.path (for src modules)
src_dir = repo_root / 'src'
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from exceptions import RemoteServiceError  # noqa: E402
from task_gateway import Task  # noqa: E402


class FakeGateway:
    """
    In-memory stand-in for TaskGateway.

    Records every call in ``calls`` so tests can assert that nothing remote
    happened (e.g. after a rejected signature).
    """

    def __init__(self, tasks: Optional[List[Task]] = None):
        self.tasks: Dict[str, Task] = {t.id: t for t in (tasks or [])}
        self.calls: List[tuple] = []
        self.labels: Dict[str, str] = {}
        self.fail_close = False
        self.fail_get = False
        self.fail_list = False
        self._next_id = 1000

    def create_task(self, content, labels=()):
        self.calls.append(("create_task", content, tuple(labels)))
        self._next_id += 1
        task = Task(id=str(self._next_id), content=content, labels=tuple(labels))
        self.tasks[task.id] = task
        return task

    def close_task(self, task_id):
        self.calls.append(("close_task", str(task_id)))
        if self.fail_close:
            raise RemoteServiceError("close failed", status_code=503)
        task = self.tasks.get(str(task_id))
        if task is not None:
            self.tasks[task.id] = Task(id=task.id, content=task.content, priority=task.priority,
                                       labels=task.labels, is_completed=True, url=task.url)

    def get_task(self, task_id):
        self.calls.append(("get_task", str(task_id)))
        if self.fail_get or str(task_id) not in self.tasks:
            raise RemoteServiceError("not found", status_code=404)
        return self.tasks[str(task_id)]

    def list_open_by_label(self, label):
        self.calls.append(("list_open_by_label", label))
        if self.fail_list:
            raise RemoteServiceError("list failed", status_code=500)
        return [t for t in self.tasks.values() if not t.is_completed and t.has_label(label)]

    def list_project_tasks(self):
        self.calls.append(("list_project_tasks",))
        if self.fail_list:
            raise RemoteServiceError("list failed", status_code=500)
        return [t for t in self.tasks.values() if not t.is_completed]

    def ensure_label(self, name):
        self.calls.append(("ensure_label", name))
        return self.labels.setdefault(name, f"L{len(self.labels) + 1}")

    def remote_calls(self):
        return [c[0] for c in self.calls]
