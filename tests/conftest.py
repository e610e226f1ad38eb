"""Shared fixtures: an in-memory management server behind a fake HTTP session."""

import copy
import datetime
import json

import pytest
import requests

from policy_rule_cleanup.client import SESSION_HEADER, ManagementClient
from policy_rule_cleanup.models import Rule, RunParameters

TODAY = datetime.date(2024, 6, 15)


def rule_entry(uid, number, hits=0, enabled=True, disable_date=None, name=None,
               audit_field="field-1"):
    """A show-access-rulebase entry as the server returns it."""
    entry = {
        "type": "access-rule",
        "uid": uid,
        "name": name or f"rule-{uid}",
        "rule-number": number,
        "enabled": enabled,
        "hits": {"value": hits},
        "source": [{"name": "Any"}],
        "destination": [{"name": "web-servers"}],
        "service": [{"name": "https"}],
        "action": {"name": "Accept"},
        "track": {"type": {"name": "Log"}},
        "install-on": [{"name": "Policy Targets"}],
        "comments": "",
        "custom-fields": {"field-1": "", "field-2": "", "field-3": ""},
        "meta-info": {
            "creator": "admin",
            "creation-time": {"iso-8601": "2020-01-01T10:00+0000"},
            "last-modifier": "admin",
            "last-modify-time": {"iso-8601": "2021-01-01T10:00+0000"},
        },
    }
    if disable_date is not None:
        entry["custom-fields"][audit_field] = disable_date.isoformat()
    return entry


def make_rule(uid, number=1, hits=0, enabled=True, disable_date=None):
    return Rule(uid=uid, rule_number=number, name=f"rule-{uid}", hit_count=hits,
                enabled=enabled, disable_date=disable_date)


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.text = json.dumps(body)

    def json(self):
        return self._body


class FakeManagementServer:
    """Minimal stateful imitation of the management web API."""

    def __init__(self, rules=None, password="secret"):
        self.rules = list(rules or [])
        self.password = password
        self.calls = []
        self.sid = None
        self._snapshot = None
        self.fail_uids = set()
        self.fail_commands = set()
        self.task_progress = [100]
        self.task_status = "succeeded"
        self.after_page = None
        self.stuck_cursor = False

    def commands(self):
        return [command for command, _, _ in self.calls]

    def count(self, command):
        return self.commands().count(command)

    def rule(self, uid):
        for entry in self.rules:
            if entry["uid"] == uid:
                return entry
        return None

    def handle(self, command, payload, headers):
        self.calls.append((command, payload, headers))
        if command in self.fail_commands:
            return FakeResponse(500, {"code": "generic_error", "message": f"{command} broke"})

        if command == "login":
            if payload.get("password") != self.password:
                return FakeResponse(400, {"code": "err_login_failed",
                                          "message": "Authentication to server failed."})
            self.sid = "sid-1234"
            self._snapshot = copy.deepcopy(self.rules)
            return FakeResponse(200, {"sid": self.sid, "uid": "session-uid"})

        if headers.get(SESSION_HEADER) != self.sid:
            return FakeResponse(403, {"code": "generic_err_wrong_session_id",
                                      "message": "Wrong session id"})

        handler = getattr(self, "_" + command.replace("-", "_"))
        return handler(payload)

    def _logout(self, payload):
        self.sid = None
        return FakeResponse(200, {"message": "OK"})

    def _show_access_rulebase(self, payload):
        offset, limit = payload["offset"], payload["limit"]
        page = copy.deepcopy(self.rules[offset:offset + limit])
        to = offset if self.stuck_cursor else offset + len(page)
        body = {"from": offset + 1, "to": to, "total": len(self.rules), "rulebase": page}
        if self.after_page:
            self.after_page(self)
        return FakeResponse(200, body)

    def _set_access_rule(self, payload):
        if payload["uid"] in self.fail_uids:
            return FakeResponse(400, {"code": "generic_err_object_locked",
                                      "message": "Object is locked"})
        entry = self.rule(payload["uid"])
        entry["enabled"] = payload["enabled"]
        entry["custom-fields"].update(payload.get("custom-fields", {}))
        return FakeResponse(200, entry)

    def _delete_access_rule(self, payload):
        if payload["uid"] in self.fail_uids:
            return FakeResponse(404, {"code": "generic_err_object_not_found",
                                      "message": "Requested object not found"})
        self.rules = [entry for entry in self.rules if entry["uid"] != payload["uid"]]
        return FakeResponse(200, {"message": "OK"})

    def _publish(self, payload):
        self._progress = iter(self.task_progress)
        return FakeResponse(200, {"task-id": "task-1"})

    def _show_task(self, payload):
        percentage = next(self._progress, self.task_progress[-1])
        status = self.task_status if percentage >= 100 else "in progress"
        return FakeResponse(200, {"tasks": [{"task-id": payload["task-id"], "status": status,
                                             "progress-percentage": percentage}]})

    def _discard(self, payload):
        changes = len(self._snapshot) != len(self.rules) or self._snapshot != self.rules
        self.rules = copy.deepcopy(self._snapshot)
        return FakeResponse(200, {"message": "OK", "number-of-discarded-changes": int(changes)})


class FakeHttp:
    """Stands in for requests.Session and routes posts to the fake server."""

    def __init__(self, server, error=None):
        self.server = server
        self.error = error
        self.verify = True

    def post(self, url, json=None, headers=None, timeout=None, verify=None):
        if self.error is not None:
            raise self.error
        command = url.rsplit("/", 1)[-1]
        return self.server.handle(command, json or {}, headers or {})


@pytest.fixture
def server():
    return FakeManagementServer()


@pytest.fixture
def client(server):
    return ManagementClient("mgmt.example.local", http=FakeHttp(server))


@pytest.fixture
def logged_in(client):
    client.open("admin", "secret")
    return client


@pytest.fixture
def params():
    return RunParameters(
        server="mgmt.example.local",
        user="admin",
        password="secret",
        layer="Network",
        disable_months=2,
        delete_months=3,
        commit=True,
        non_interactive=True,
        page_size=10,
        poll_interval=0.01,
        publish_timeout=5,
    )


@pytest.fixture
def connection_error():
    return requests.exceptions.ConnectionError("Name or service not known")
