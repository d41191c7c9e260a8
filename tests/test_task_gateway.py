"""
Tests for src/task_gateway.py: Todoist REST calls.

The requests.Session is replaced by a Mock; responses are real
requests.Response objects so ok/json()/text behave like the library.
"""

import json
from unittest.mock import Mock

import pytest
import requests

from exceptions import RemoteServiceError
from task_gateway import LabelCache, Task, TaskGateway


def make_response(status=200, payload=None, text=None):
    response = requests.Response()
    response.status_code = status
    response.encoding = "utf-8"
    if payload is not None:
        response._content = json.dumps(payload).encode("utf-8")
    else:
        response._content = (text or "").encode("utf-8")
    return response


@pytest.fixture
def session():
    s = Mock()
    s.headers = {}
    return s


@pytest.fixture
def gateway(session):
    return TaskGateway("tok-123", "2203306141", base_url="https://api.test/rest/v2/",
                       timeout=5, session=session)


def last_call(session):
    args, kwargs = session.request.call_args
    return args[0], args[1], kwargs


class TestTask:
    def test_from_api(self):
        task = Task.from_api({
            "id": 8412345678, "content": "K100 – Dach – Palette 1/2", "priority": 3,
            "labels": ["K100"], "is_completed": False, "url": "https://todoist.com/x",
            "project_id": 2203306141,
        })
        assert task.id == "8412345678"
        assert task.priority == 3
        assert task.labels == ("K100",)
        assert task.project_id == "2203306141"
        assert task.commission_label == "K100"
        assert task.has_label("K100")

    def test_from_api_defaults(self):
        task = Task.from_api({"id": "1"})
        assert task.content == ""
        assert task.priority == 1
        assert task.labels == ()
        assert task.commission_label is None


class TestLabelCache:
    def test_factory_called_once(self):
        cache = LabelCache()
        factory = Mock(return_value="L1")

        assert cache.get_or_create("K100", factory) == "L1"
        assert cache.get_or_create("K100", factory) == "L1"
        factory.assert_called_once_with("K100")
        assert len(cache) == 1

    def test_initial_values(self):
        cache = LabelCache({"K100": "L9"})
        assert cache.get("K100") == "L9"
        cache.put("K200", "L10")
        assert cache.get("K200") == "L10"


class TestSetup:
    def test_bearer_header(self, gateway, session):
        assert session.headers["Authorization"] == "Bearer tok-123"

    def test_trailing_slash_stripped(self, gateway):
        assert gateway.base_url == "https://api.test/rest/v2"

    def test_from_config(self):
        config = Mock(todoist_token="t", project_id="1", api_base_url="https://x",
                      request_timeout=3.0)
        cache = LabelCache()
        gw = TaskGateway.from_config(config, label_cache=cache)
        assert gw.label_cache is cache
        assert gw.timeout == 3.0


class TestTasks:
    def test_create_task(self, gateway, session):
        session.request.return_value = make_response(200, {"id": "99", "content": "c", "labels": ["K100"]})

        task = gateway.create_task("c", labels=["K100"])

        method, url, kwargs = last_call(session)
        assert (method, url) == ("POST", "https://api.test/rest/v2/tasks")
        assert kwargs["json"] == {"content": "c", "project_id": "2203306141", "labels": ["K100"]}
        assert kwargs["timeout"] == 5
        assert task.id == "99"

    def test_create_task_non_numeric_project_goes_to_inbox(self, session):
        gw = TaskGateway("t", "Paletten", session=session)
        session.request.return_value = make_response(200, {"id": "1", "content": "c"})

        gw.create_task("c")

        _, _, kwargs = last_call(session)
        assert "project_id" not in kwargs["json"]
        assert "labels" not in kwargs["json"]

    def test_close_task(self, gateway, session):
        session.request.return_value = make_response(204)

        gateway.close_task("42")

        method, url, _ = last_call(session)
        assert (method, url) == ("POST", "https://api.test/rest/v2/tasks/42/close")

    def test_get_task(self, gateway, session):
        session.request.return_value = make_response(200, {"id": "42", "content": "x", "labels": ["K1"]})

        assert gateway.get_task("42").commission_label == "K1"
        method, url, _ = last_call(session)
        assert (method, url) == ("GET", "https://api.test/rest/v2/tasks/42")

    def test_list_open_by_label_filters_locally(self, gateway, session):
        session.request.return_value = make_response(200, [
            {"id": "1", "content": "a", "labels": ["K100"]},
            {"id": "2", "content": "b", "labels": ["K1000"]},
            {"id": "3", "content": "c", "labels": ["K100"], "is_completed": True},
        ])

        tasks = gateway.list_open_by_label("K100")

        assert [t.id for t in tasks] == ["1"]
        _, _, kwargs = last_call(session)
        assert kwargs["params"] == {"filter": "@K100"}

    def test_list_accepts_results_envelope(self, gateway, session):
        session.request.return_value = make_response(200, {"results": [
            {"id": "1", "content": "a", "labels": ["K100"]},
        ]})

        assert [t.id for t in gateway.list_project_tasks()] == ["1"]
        _, _, kwargs = last_call(session)
        assert kwargs["params"] == {"project_id": "2203306141"}


class TestErrors:
    def test_non_2xx_raises(self, gateway, session):
        session.request.return_value = make_response(403, text="Forbidden")

        with pytest.raises(RemoteServiceError) as exc_info:
            gateway.close_task("42")

        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "Forbidden"

    def test_network_error_raises(self, gateway, session):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(RemoteServiceError) as exc_info:
            gateway.get_task("42")

        assert exc_info.value.status_code is None

    def test_invalid_json_raises(self, gateway, session):
        session.request.return_value = make_response(200, text="<html>")

        with pytest.raises(RemoteServiceError):
            gateway.get_task("42")

    @pytest.mark.parametrize("response", [
        make_response(200, text=""),
        make_response(204),
        make_response(200, payload=[]),
        make_response(200, payload={"content": "no id"}),
        make_response(200, payload={"id": "42", "priority": "hoch"}),
    ])
    def test_malformed_task_raises(self, gateway, session, response):
        session.request.return_value = response

        with pytest.raises(RemoteServiceError) as exc_info:
            gateway.get_task("42")

        assert exc_info.value.status_code == response.status_code

    def test_malformed_created_task_raises(self, gateway, session):
        session.request.return_value = make_response(200, text="")

        with pytest.raises(RemoteServiceError):
            gateway.create_task("c")

    @pytest.mark.parametrize("payload", [{"results": "x"}, "text", [{"content": "no id"}]])
    def test_malformed_task_list_raises(self, gateway, session, payload):
        session.request.return_value = make_response(200, payload)

        with pytest.raises(RemoteServiceError):
            gateway.list_open_by_label("K100")


class TestLabels:
    def test_existing_label_is_cached(self, gateway, session):
        session.request.return_value = make_response(200, [{"id": "7", "name": "K100"}])

        assert gateway.ensure_label("K100") == "7"
        assert gateway.ensure_label("K100") == "7"
        assert session.request.call_count == 1

    def test_missing_label_is_created(self, gateway, session):
        session.request.side_effect = [
            make_response(200, [{"id": "7", "name": "OTHER"}]),
            make_response(200, {"id": "8", "name": "K100"}),
        ]

        assert gateway.ensure_label("K100") == "8"
        method, url, kwargs = last_call(session)
        assert (method, url) == ("POST", "https://api.test/rest/v2/labels")
        assert kwargs["json"] == {"name": "K100"}
        assert gateway.label_cache.get("K100") == "8"
