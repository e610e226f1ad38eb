"""
Run controller: one session, fetch, classify, mutate, then publish or discard.

Each phase records its result on a RunResult instead of raising, so the
session is always logged out and the caller always gets the full picture.
"""

import datetime
import logging
from typing import Callable, List, Optional

from . import executor
from .classifier import build_action_set, subtract_months
from .client import ManagementClient
from .errors import (
    DiscardError,
    InconsistentPaginationError,
    LogoutError,
    MutationPartialFailure,
    PublishError,
    PublishTimeoutError,
    RuleCleanupError,
)
from .fetcher import fetch_rules
from .models import (
    CommitDecision,
    PhaseResult,
    PhaseStatus,
    Rule,
    RunParameters,
    RunResult,
)
from .report import format_rules_table

ConfirmFunction = Callable[[str], bool]


class RuleCleanupRun:
    """Drives a single cleanup run against a management server."""

    def __init__(self, params: RunParameters, client: Optional[ManagementClient] = None,
                 confirm: Optional[ConfirmFunction] = None,
                 on_fetch_page: Optional[Callable[[int, int], None]] = None,
                 on_mutation: Optional[executor.ProgressCallback] = None,
                 today: Optional[datetime.date] = None):
        """
        Initialize the run.

        Args:
            params: Validated run parameters
            client: Session client (built from params when omitted)
            confirm: Asked once per phase with a summary; False cancels the phase
            on_fetch_page: Progress hook for rule retrieval
            on_mutation: Progress hook for disable/delete batches
            today: Reference date for windows and audit stamps
        """
        self.params = params
        self.client = client or ManagementClient(params.server, port=params.port,
                                                 timeout=params.timeout)
        self.confirm = confirm
        self.on_fetch_page = on_fetch_page
        self.on_mutation = on_mutation
        self.today = today or datetime.date.today()

    def execute(self) -> RunResult:
        result = RunResult(parameters=self.params)
        try:
            self.client.open(self.params.user, self.params.password)
        except RuleCleanupError as e:
            logging.error(f"Could not open a session on {self.params.server}: {e}")
            result.fatal_error = e
            result.decision = CommitDecision.ABORTED
            return result

        try:
            self._run(result)
        finally:
            self._close(result)
        return result

    def _fetch(self, hits_from: Optional[datetime.date]) -> List[Rule]:
        return list(fetch_rules(
            self.client,
            self.params.layer,
            hits_from=hits_from,
            page_size=self.params.page_size,
            audit_field=self.params.audit_field,
            on_page=self.on_fetch_page,
        ))

    def _classify(self, result: RunResult) -> None:
        disable_pool = delete_pool = None
        if self.params.disable_months is not None:
            window_start = subtract_months(self.today, self.params.disable_months)
            disable_pool = self._fetch(window_start)
            result.total_rules = len(disable_pool)
        if self.params.delete_months is not None:
            delete_pool = self._fetch(None)
            result.total_rules = len(delete_pool)
        if disable_pool is not None and delete_pool is not None:
            self._check_passes_agree(disable_pool, delete_pool)
        result.action_set = build_action_set(
            self.today,
            disable_pool=disable_pool,
            delete_pool=delete_pool,
            delete_months=self.params.delete_months,
        )
        logging.info(
            f"Classified {result.total_rules} rules: {len(result.action_set.to_disable)} to disable, "
            f"{len(result.action_set.to_delete)} to delete"
        )

    def _check_passes_agree(self, disable_pool: List[Rule], delete_pool: List[Rule]) -> None:
        """Both passes must see the same rules in the same enabled state."""
        first = {rule.uid: rule.enabled for rule in disable_pool}
        second = {rule.uid: rule.enabled for rule in delete_pool}
        if first.keys() != second.keys():
            raise InconsistentPaginationError(
                f"Layer '{self.params.layer}' gained or lost rules between the two reads"
            )
        changed = sorted(uid for uid, enabled in first.items() if second[uid] != enabled)
        if changed:
            raise InconsistentPaginationError(
                f"Rules {', '.join(changed)} of layer '{self.params.layer}' were enabled or "
                f"disabled by someone else between the two reads"
            )

    def _run(self, result: RunResult) -> None:
        try:
            self._classify(result)
        except RuleCleanupError as e:
            logging.error(f"Rule retrieval failed, nothing was changed: {e}")
            result.fatal_error = e
            result.decision = CommitDecision.ABORTED
            return

        phases = (
            ("disable", result.action_set.to_disable),
            ("delete", result.action_set.to_delete),
        )

        if self.params.dry_run:
            for action, rules in phases:
                status = PhaseStatus.DRY_RUN if rules else PhaseStatus.SKIPPED
                result.phases.append(PhaseResult(action, rules, status))
                for rule in rules:
                    logging.info(f"[DRY RUN] Would {action} rule #{rule.rule_number} '{rule.name}'")
            result.decision = CommitDecision.DRY_RUN
            return

        failed = False
        for action, rules in phases:
            if failed:
                result.phases.append(PhaseResult(action, rules, PhaseStatus.NOT_RUN))
                continue
            if not rules:
                result.phases.append(PhaseResult(action, rules, PhaseStatus.SKIPPED))
                continue
            if not self._confirmed(action, rules):
                logging.info(f"Operator cancelled the {action} phase")
                result.phases.append(PhaseResult(action, rules, PhaseStatus.CANCELLED))
                continue

            phase = PhaseResult(action, rules, PhaseStatus.COMPLETED)
            result.phases.append(phase)
            try:
                phase.outcome = self._mutate(action, rules)
            except RuleCleanupError as e:
                logging.error(f"The {action} phase stopped: {e}")
                result.errors.append(e)
                failed = True
                continue
            if phase.outcome.had_error:
                result.errors.append(MutationPartialFailure(
                    action, phase.outcome.failed_uids, phase.outcome.first_error
                ))
                failed = True

        self._decide(result, failed)

    def _confirmed(self, action: str, rules) -> bool:
        if self.params.non_interactive or self.confirm is None:
            return True
        summary = (f"About to {action} {len(rules)} rule(s) in layer '{self.params.layer}':\n"
                   f"{format_rules_table(rules)}")
        return bool(self.confirm(summary))

    def _mutate(self, action: str, rules):
        if action == "disable":
            return executor.disable_rules(
                self.client, self.params.layer, rules,
                audit_field=self.params.audit_field,
                today=self.today,
                progress=self.on_mutation,
            )
        return executor.delete_rules(self.client, self.params.layer, rules,
                                     progress=self.on_mutation)

    def _decide(self, result: RunResult, failed: bool) -> None:
        if failed:
            logging.warning("Errors occurred while changing rules; discarding all session changes")
            self._discard(result)
            return

        if not any(phase.status is PhaseStatus.COMPLETED for phase in result.phases):
            result.decision = CommitDecision.NO_CHANGES
            return

        if not self.params.commit:
            logging.info("Commit not requested; changes stay unpublished in the session")
            result.decision = CommitDecision.LEFT_PENDING
            return

        self._publish(result)

    def _publish(self, result: RunResult) -> None:
        try:
            task_id = self.client.publish()
            executor.wait_for_task(
                self.client, task_id,
                timeout=self.params.publish_timeout,
                interval=self.params.poll_interval,
            )
        except PublishTimeoutError as e:
            # the task keeps running on the server; changes are not rolled back
            logging.error(str(e))
            self.client.mark_published()
            result.errors.append(e)
            result.decision = CommitDecision.PUBLISHED
            return
        except PublishError as e:
            logging.error(f"{e}; discarding session changes")
            result.errors.append(e)
            self._discard(result)
            return
        self.client.mark_published()
        result.decision = CommitDecision.PUBLISHED
        logging.info("Changes published")

    def _discard(self, result: RunResult) -> None:
        try:
            self.client.discard()
        except RuleCleanupError as e:
            error = e if isinstance(e, DiscardError) else DiscardError(f"Discard failed: {e}")
            logging.error(f"{error}. Manual intervention on the management server is required.")
            result.errors.append(error)
            result.decision = CommitDecision.DISCARD_FAILED
            return
        result.decision = CommitDecision.DISCARDED

    def _close(self, result: RunResult) -> None:
        try:
            self.client.close()
        except LogoutError as e:
            logging.warning(str(e))
            result.warnings.append(e)
            return
        result.session_closed = True


def run_cleanup(params: RunParameters, **kwargs) -> RunResult:
    """Validate the parameters and execute one run."""
    return RuleCleanupRun(params.validate(), **kwargs).execute()
