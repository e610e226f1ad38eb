"""Data model shared by the fetcher, classifier, executor and controller."""

import datetime
import enum
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .errors import ConfigurationError, RuleCleanupError

AUDIT_FIELDS = ("field-1", "field-2", "field-3")
MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class Rule:
    """A single access rule as returned by the management server."""

    uid: str
    rule_number: int
    name: str
    hit_count: int
    enabled: bool
    disable_date: Optional[datetime.date] = None
    source: Tuple[str, ...] = ()
    destination: Tuple[str, ...] = ()
    service: Tuple[str, ...] = ()
    action: str = ""
    track: str = ""
    install_on: Tuple[str, ...] = ()
    comments: str = ""
    creator: str = ""
    creation_time: str = ""
    last_modifier: str = ""
    last_modify_time: str = ""

    @property
    def effective_disable_date(self) -> Optional[datetime.date]:
        """Audit date, only meaningful while the rule is disabled."""
        if self.enabled:
            return None
        return self.disable_date


class SessionState(enum.Enum):
    OPEN = "open"
    PUBLISHED = "published"
    DISCARDED = "discarded"
    CLOSED = "closed"


@dataclass
class Session:
    """One login context on the management server."""

    session_id: str
    server: str
    name: str
    state: SessionState = SessionState.OPEN

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN


def _by_rule_number(rules) -> Tuple[Rule, ...]:
    return tuple(sorted(rules, key=lambda rule: rule.rule_number))


@dataclass(frozen=True)
class ActionSet:
    """Rules selected for disabling and for deletion, sorted by rule number."""

    to_disable: Tuple[Rule, ...] = ()
    to_delete: Tuple[Rule, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "to_disable", _by_rule_number(self.to_disable))
        object.__setattr__(self, "to_delete", _by_rule_number(self.to_delete))
        overlap = {r.uid for r in self.to_disable} & {r.uid for r in self.to_delete}
        if overlap:
            raise ValueError(f"Rules selected for both disable and delete: {sorted(overlap)}")

    @property
    def disable_uids(self) -> List[str]:
        return [rule.uid for rule in self.to_disable]

    @property
    def delete_uids(self) -> List[str]:
        return [rule.uid for rule in self.to_delete]

    @property
    def is_empty(self) -> bool:
        return not self.to_disable and not self.to_delete


@dataclass
class MutationOutcome:
    """Per-rule results of one disable or delete batch."""

    action: str
    succeeded_uids: List[str] = field(default_factory=list)
    failed_uids: List[str] = field(default_factory=list)
    first_error: Optional[Exception] = None

    @property
    def had_error(self) -> bool:
        return bool(self.failed_uids)

    def record_success(self, uid: str) -> None:
        self.succeeded_uids.append(uid)

    def record_failure(self, uid: str, error: Exception) -> None:
        self.failed_uids.append(uid)
        if self.first_error is None:
            self.first_error = error


class PhaseStatus(enum.Enum):
    SKIPPED = "skipped"
    DRY_RUN = "dry-run"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NOT_RUN = "not-run"


@dataclass
class PhaseResult:
    action: str
    candidates: Tuple[Rule, ...]
    status: PhaseStatus
    outcome: Optional[MutationOutcome] = None

    @property
    def had_error(self) -> bool:
        return self.outcome is not None and self.outcome.had_error


class CommitDecision(enum.Enum):
    PUBLISHED = "published"
    DISCARDED = "discarded"
    DISCARD_FAILED = "discard-failed"
    LEFT_PENDING = "left-pending"
    NO_CHANGES = "no-changes"
    DRY_RUN = "dry-run"
    ABORTED = "aborted"


@dataclass(frozen=True)
class RunParameters:
    """Validated inputs of a cleanup run."""

    server: str
    user: str
    password: str
    layer: str
    disable_months: Optional[int] = None
    delete_months: Optional[int] = None
    dry_run: bool = False
    commit: bool = False
    non_interactive: bool = False
    port: int = 443
    audit_field: str = "field-1"
    page_size: int = 100
    timeout: float = 30
    publish_timeout: float = 600
    poll_interval: float = 2

    def validate(self) -> "RunParameters":
        """Check parameter consistency.

        Raises:
            ConfigurationError: on the first invalid value found
        """
        if not self.server:
            raise ConfigurationError("A management server address is required")
        if not self.user:
            raise ConfigurationError("A user name is required")
        if not self.layer:
            raise ConfigurationError("A policy layer name is required")
        if self.disable_months is None and self.delete_months is None:
            raise ConfigurationError("Give a disable window, a delete threshold, or both")
        for label, months in (("disable window", self.disable_months),
                              ("delete threshold", self.delete_months)):
            if months is not None and months < 1:
                raise ConfigurationError(f"The {label} must be at least one month, got {months}")
        if (self.disable_months is not None and self.delete_months is not None
                and self.delete_months <= self.disable_months):
            raise ConfigurationError(
                f"The delete threshold ({self.delete_months} months) must be longer than "
                f"the disable window ({self.disable_months} months)"
            )
        if self.audit_field not in AUDIT_FIELDS:
            raise ConfigurationError(
                f"Audit field must be one of {', '.join(AUDIT_FIELDS)}, got '{self.audit_field}'"
            )
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ConfigurationError(f"Page size must be between 1 and {MAX_PAGE_SIZE}")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"Invalid port {self.port}")
        if self.timeout <= 0 or self.publish_timeout <= 0 or self.poll_interval <= 0:
            raise ConfigurationError("Timeouts and poll interval must be positive")
        return self


@dataclass
class RunResult:
    """Everything a run produced, consumed by the console and Excel reports."""

    parameters: RunParameters
    action_set: ActionSet = field(default_factory=ActionSet)
    phases: List[PhaseResult] = field(default_factory=list)
    decision: Optional[CommitDecision] = None
    errors: List[RuleCleanupError] = field(default_factory=list)
    # reported to the operator but never counted against the run
    warnings: List[RuleCleanupError] = field(default_factory=list)
    fatal_error: Optional[RuleCleanupError] = None
    session_closed: bool = False
    total_rules: int = 0

    @property
    def mutation_failed(self) -> bool:
        return any(phase.had_error for phase in self.phases)

    @property
    def had_error(self) -> bool:
        return bool(self.errors) or self.fatal_error is not None

    @property
    def exit_code(self) -> int:
        return 1 if self.had_error else 0

    def phase(self, action: str) -> Optional[PhaseResult]:
        for phase in self.phases:
            if phase.action == action:
                return phase
        return None
