"""Apply disable/delete changes rule by rule and wait for publish tasks."""

import datetime
import logging
import time
from typing import Callable, Iterable, Optional

from .errors import ApiError, ConnectivityError, PublishError, PublishTimeoutError
from .fetcher import AUDIT_DATE_FORMAT
from .models import MutationOutcome, Rule

ProgressCallback = Callable[[int, int, MutationOutcome], None]


def _apply(action: str, rules: Iterable[Rule], call: Callable[[Rule], None],
           progress: Optional[ProgressCallback] = None) -> MutationOutcome:
    rules = list(rules)
    outcome = MutationOutcome(action=action)
    for index, rule in enumerate(rules, 1):
        try:
            call(rule)
        except (ApiError, ConnectivityError) as e:
            logging.error(f"Failed to {action} rule '{rule.name}' ({rule.uid}): {e}")
            outcome.record_failure(rule.uid, e)
        else:
            logging.info(f"{action.capitalize()}d rule #{rule.rule_number} '{rule.name}' ({rule.uid})")
            outcome.record_success(rule.uid)
        if progress:
            progress(index, len(rules), outcome)
    return outcome


def disable_rules(client, layer: str, rules: Iterable[Rule], audit_field: str = "field-1",
                  today: Optional[datetime.date] = None,
                  progress: Optional[ProgressCallback] = None) -> MutationOutcome:
    """
    Disable rules and stamp the disable date into the audit field.

    Both changes go in the same set-access-rule request. Every rule is
    attempted once; failures are collected in the returned outcome.

    Args:
        client: ManagementClient with an open session
        layer: Access layer holding the rules
        rules: Rules to disable
        audit_field: Custom field receiving the date
        today: Date to write (defaults to the current date)
        progress: Called with (done, total, outcome) after every rule
    """
    stamp = (today or datetime.date.today()).strftime(AUDIT_DATE_FORMAT)

    def disable(rule: Rule) -> None:
        client.api_call("set-access-rule", {
            "uid": rule.uid,
            "layer": layer,
            "enabled": False,
            "custom-fields": {audit_field: stamp},
        })

    return _apply("disable", rules, disable, progress)


def delete_rules(client, layer: str, rules: Iterable[Rule],
                 progress: Optional[ProgressCallback] = None) -> MutationOutcome:
    """Delete rules one by one, collecting per-rule failures."""

    def delete(rule: Rule) -> None:
        client.api_call("delete-access-rule", {"uid": rule.uid, "layer": layer})

    return _apply("delete", rules, delete, progress)


def wait_for_task(client, task_id: str, timeout: float = 600, interval: float = 2,
                  clock: Callable[[], float] = time.monotonic,
                  sleep: Callable[[float], None] = time.sleep) -> dict:
    """
    Poll a server task until it reports 100% progress.

    Args:
        client: ManagementClient
        task_id: Task returned by publish
        timeout: Maximum wait in seconds
        interval: Seconds between polls

    Returns:
        The final task record

    Raises:
        PublishError: the task failed or could not be queried
        PublishTimeoutError: the task was still running after ``timeout`` seconds
    """
    deadline = clock() + timeout
    while True:
        try:
            task = client.show_task(task_id)
        except (ApiError, ConnectivityError) as e:
            raise PublishError(f"Could not query task {task_id}: {e}") from e

        status = task.get("status", "")
        percentage = int(task.get("progress-percentage", 0))
        logging.debug(f"Task {task_id}: {status} ({percentage}%)")
        if status == "failed":
            raise PublishError(f"Task {task_id} failed: {task.get('comments', 'no details')}")
        if percentage >= 100:
            if status not in ("succeeded", ""):
                logging.warning(f"Task {task_id} finished with status '{status}'")
            return task

        if clock() >= deadline:
            raise PublishTimeoutError(
                f"Task {task_id} still at {percentage}% after {timeout:g} seconds"
            )
        sleep(interval)
