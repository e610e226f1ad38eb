"""
Unused access rule cleanup for firewall management servers.

Disables access rules without traffic hits over a lookback window,
stamping the disable date into a custom rule field, and later deletes
rules that stayed disabled past a retention threshold. All changes of a
run happen in one management session that is published or discarded as
a whole.
"""

from .classifier import build_action_set, classify_for_delete, classify_for_disable
from .client import ManagementClient
from .controller import RuleCleanupRun, run_cleanup
from .fetcher import fetch_rules
from .models import (
    ActionSet,
    CommitDecision,
    MutationOutcome,
    PhaseStatus,
    Rule,
    RunParameters,
    RunResult,
    Session,
    SessionState,
)

__version__ = "1.0.0"

__all__ = [
    "ActionSet",
    "CommitDecision",
    "ManagementClient",
    "MutationOutcome",
    "PhaseStatus",
    "Rule",
    "RuleCleanupRun",
    "RunParameters",
    "RunResult",
    "Session",
    "SessionState",
    "build_action_set",
    "classify_for_delete",
    "classify_for_disable",
    "fetch_rules",
    "run_cleanup",
]
