"""
Management server session client.

Speaks the JSON web API of the management server: every command is a
POST to ``/web_api/<command>`` and, once logged in, carries the session
id in the ``X-chkp-sid`` header. The client never retries a failed call.
"""

import datetime
import logging
from typing import Any, Dict, Optional

import requests
from requests.packages.urllib3.exceptions import InsecureRequestWarning

from .errors import (
    ApiError,
    AuthenticationError,
    ConnectivityError,
    DiscardError,
    LogoutError,
    PublishError,
    SessionStateError,
)
from .models import Session, SessionState

# Management servers ship self-signed certificates that operators accept.
requests.packages.urllib3.disable_warnings(InsecureRequestWarning)

SESSION_HEADER = "X-chkp-sid"
MUTATING_COMMANDS = frozenset({
    "set-access-rule",
    "delete-access-rule",
    "publish",
    "discard",
})
AUTH_FAILURE_CODES = frozenset({"err_login_failed", "err_login_failed_wrong_username_or_password"})


class ManagementClient:
    """Holds at most one session against a management server."""

    def __init__(self, server: str, port: int = 443, timeout: float = 30,
                 http: Optional[requests.Session] = None):
        """
        Initialize the client.

        Args:
            server: Management server address
            port: HTTPS port of the web API
            timeout: Per-request timeout in seconds
            http: Pre-built requests session (injected by tests)
        """
        self.server = server
        self.port = port
        self.timeout = timeout
        self.http = http or requests.Session()
        self.http.verify = False
        self.session: Optional[Session] = None

    @property
    def base_url(self) -> str:
        return f"https://{self.server}:{self.port}/web_api"

    def _post(self, command: str, payload: Dict[str, Any],
              headers: Dict[str, str]) -> requests.Response:
        url = f"{self.base_url}/{command}"
        logging.debug(f"POST {url}")
        try:
            return self.http.post(url, json=payload, headers=headers,
                                  timeout=self.timeout, verify=False)
        except requests.exceptions.Timeout as e:
            raise ConnectivityError(f"Timed out calling '{command}' on {self.server}: {e}") from e
        except requests.exceptions.SSLError as e:
            raise ConnectivityError(f"TLS negotiation with {self.server} failed: {e}") from e
        except requests.exceptions.ConnectionError as e:
            raise ConnectivityError(f"Cannot reach {self.server}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ConnectivityError(f"Transport failure calling '{command}' on {self.server}: {e}") from e

    @staticmethod
    def _decode(command: str, response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if response.status_code >= 400:
            raise ApiError(command, response.status_code, body.get("code"),
                           body.get("message") or response.text)
        return body

    def api_call(self, command: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Issue one command inside the current session.

        Args:
            command: Web API command name, e.g. ``show-access-rulebase``
            payload: JSON request body

        Returns:
            Decoded JSON response body

        Raises:
            SessionStateError: no session, or a mutating command outside an open session
            ConnectivityError: transport failure
            ApiError: the server answered with an error status
        """
        if self.session is None or self.session.state is SessionState.CLOSED:
            raise SessionStateError(f"Cannot call '{command}' without a logged-in session")
        if command in MUTATING_COMMANDS and not self.session.is_open:
            raise SessionStateError(
                f"Cannot call '{command}' in a {self.session.state.value} session"
            )
        headers = {SESSION_HEADER: self.session.session_id}
        response = self._post(command, payload or {}, headers)
        return self._decode(command, response)

    def open(self, user: str, password: str) -> Session:
        """
        Log in and open a new session.

        Raises:
            SessionStateError: a session is already active
            AuthenticationError: credentials rejected
            ConnectivityError: server unreachable
        """
        if self.session is not None and self.session.state is not SessionState.CLOSED:
            raise SessionStateError(f"Session '{self.session.name}' is still active")

        today = datetime.date.today().isoformat()
        session_name = f"{user}-rule-cleanup-{today}"
        payload = {
            "user": user,
            "password": password,
            "session-name": session_name,
            "session-description": f"Unused access rule cleanup run by {user} on {today}",
        }
        response = self._post("login", payload, {})
        try:
            body = self._decode("login", response)
        except ApiError as e:
            if e.status in (401, 403) or e.code in AUTH_FAILURE_CODES:
                raise AuthenticationError(
                    f"Login to {self.server} as '{user}' was rejected: {e.message or e.code}"
                ) from e
            raise
        if not body.get("sid"):
            raise AuthenticationError(f"Login to {self.server} returned no session id")

        self.session = Session(session_id=body["sid"], server=self.server, name=session_name)
        logging.info(f"Logged in to {self.server} as '{user}' (session '{session_name}')")
        return self.session

    def close(self) -> None:
        """
        Log out. Safe to call repeatedly; the session is marked closed even
        when the logout request fails.

        Raises:
            LogoutError: the logout request failed
        """
        if self.session is None or self.session.state is SessionState.CLOSED:
            return
        session = self.session
        try:
            self.api_call("logout")
        except (ApiError, ConnectivityError) as e:
            raise LogoutError(f"Logout from {self.server} failed: {e}") from e
        finally:
            session.state = SessionState.CLOSED
        logging.info(f"Logged out of {self.server}")

    def publish(self) -> str:
        """
        Start publishing the session changes.

        The session stays open until mark_published is called, so a publish
        task that fails can still be discarded.

        Returns:
            Task id to poll with show_task

        Raises:
            PublishError: the server refused the publish
        """
        try:
            body = self.api_call("publish")
        except (ApiError, ConnectivityError) as e:
            raise PublishError(f"Publish failed: {e}") from e
        task_id = body.get("task-id")
        if not task_id:
            raise PublishError("Publish returned no task id")
        logging.info(f"Publish started, task {task_id}")
        return task_id

    def mark_published(self) -> None:
        """Record that the publish task was handed off; no more changes are accepted."""
        if self.session is not None and self.session.is_open:
            self.session.state = SessionState.PUBLISHED

    def discard(self) -> int:
        """
        Revert every uncommitted change of the session.

        Returns:
            Number of discarded changes reported by the server

        Raises:
            DiscardError: the discard failed; the session must be cleaned up manually
        """
        try:
            body = self.api_call("discard")
        except (ApiError, ConnectivityError) as e:
            raise DiscardError(
                f"Discard failed, session '{self.session.name}' needs manual cleanup: {e}"
            ) from e
        self.session.state = SessionState.DISCARDED
        discarded = body.get("number-of-discarded-changes", 0)
        logging.info(f"Discarded {discarded} change(s)")
        return discarded

    def show_task(self, task_id: str) -> Dict[str, Any]:
        """Return the status record of a server task."""
        body = self.api_call("show-task", {"task-id": task_id})
        tasks = body.get("tasks") or []
        if not tasks:
            raise ApiError("show-task", 200, message=f"No task record for {task_id}")
        return tasks[0]
