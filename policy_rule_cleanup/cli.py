"""Command line entry point: arguments, prompts, progress and summaries."""

import argparse
import dataclasses
import getpass
import logging
import os
import sys
from typing import List, Optional

from .controller import RuleCleanupRun
from .errors import ConfigurationError
from .models import AUDIT_FIELDS, CommitDecision, MutationOutcome, RunParameters, RunResult
from .report import export_to_excel, format_rules_table, summary_lines

PASSWORD_ENV = "RULE_CLEANUP_PASSWORD"

ERROR_MESSAGES = {
    "authentication": "Authentication failed - check the user name and password.",
    "connectivity": "Could not reach the management server - check address, port and network path.",
    "api": "The management server rejected a request.",
    "session": "A request was issued outside an open session.",
    "fetch": "Reading the rule base failed - nothing was changed.",
    "pagination": "The rule base changed while it was being read - nothing was changed. Try again later.",
    "mutation": "Some rules could not be changed - all changes of this run were discarded.",
    "publish": "Publishing failed - changes were discarded.",
    "publish-timeout": "Publish did not finish in time - verify the publish task on the server.",
    "discard": "Discarding changes failed - take over or discard the session manually on the server.",
    "logout": "Logout failed - the session may still be listed on the server.",
}


def print_progress_bar(iteration, total, prefix='', suffix='', length=50, fill='█', print_end="\r"):
    """
    Redraw a one-line progress bar for rule fetching and rule changes.

    Args:
        iteration: Rules handled so far
        total: Rules expected; nothing is drawn when zero
        prefix: Phase label, e.g. "Fetching:"
        suffix: Trailing status such as the failure count
        length: Bar width in characters
        fill: Character for the completed part
        print_end: Line ending; a newline follows once iteration reaches total
    """
    if total <= 0:
        return
    print("\r" + " " * 120, end="\r")

    percent = ("{0:.1f}").format(100 * (iteration / float(total)))
    filled_length = int(length * iteration // total)
    bar = fill * filled_length + '-' * (length - filled_length)
    print(f'\r{prefix} |{bar}| {percent}% {iteration}/{total} {suffix}', end=print_end)

    if iteration >= total:
        print()


def setup_logging(debug: bool = False, log_file: Optional[str] = None) -> None:
    """Log to the file only when one is given, else minimal console logging."""
    log_level = logging.DEBUG if debug else logging.INFO

    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    if log_file:
        logging.basicConfig(
            level=log_level,
            format='%(asctime)s - %(levelname)s - %(message)s',
            handlers=[logging.FileHandler(log_file, mode='a')]
        )
        print(f"Logging to file: {log_file}")
    else:
        logging.basicConfig(level=log_level)


def confirm_prompt(summary: str) -> bool:
    """Show what is about to happen and ask the operator."""
    print()
    print(summary)
    while True:
        answer = input("Proceed? [yes/no]: ").strip().lower()
        if answer in ("y", "yes"):
            return True
        if answer in ("n", "no", ""):
            return False
        print("Please answer 'yes' or 'no'.")


def _fetch_progress(fetched: int, total: int) -> None:
    print_progress_bar(fetched, total, prefix='Fetching:', length=40)


def _mutation_progress(done: int, total: int, outcome: MutationOutcome) -> None:
    print_progress_bar(done, total, prefix=f'{outcome.action.capitalize()}:',
                       suffix=f'({len(outcome.failed_uids)} failed)', length=40)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="policy-rule-cleanup",
        description="Disable unused access rules and delete rules that stayed disabled too long",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --server 10.0.0.5 --user admin --layer "Network" --disable-months 6 --dry-run
  %(prog)s --server 10.0.0.5 --user admin --layer "Network" --disable-months 6 --delete-months 12 --commit
  %(prog)s --server mgmt.example.local --user admin --layer "Network" --delete-months 12 --commit --yes
  %(prog)s --server 10.0.0.5 --user admin --layer "Network" --disable-months 3 --excel-report cleanup.xlsx
        """
    )

    required = parser.add_argument_group('required arguments')
    required.add_argument('--server', required=True, help='Management server address')
    required.add_argument('--user', required=True, help='Management user name')
    required.add_argument('--layer', required=True, help='Access policy layer name')

    parser.add_argument(
        '--password',
        help=f'Management password (default: ${PASSWORD_ENV}, else prompt)'
    )
    parser.add_argument('--port', type=int, default=443, help='Web API port (default: 443)')
    parser.add_argument(
        '--disable-months',
        type=int,
        help='Disable enabled rules without hits in this many months'
    )
    parser.add_argument(
        '--delete-months',
        type=int,
        help='Delete rules disabled by this tool more than this many months ago '
             '(must exceed --disable-months)'
    )
    parser.add_argument(
        '--audit-field',
        choices=AUDIT_FIELDS,
        default='field-1',
        help='Custom rule field that stores the disable date (default: field-1)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        default=False,
        help='Report candidates without changing anything (default: False)'
    )
    parser.add_argument(
        '--commit',
        action='store_true',
        default=False,
        help='Publish the changes; without it they stay unpublished in the session (default: False)'
    )
    parser.add_argument(
        '--yes', '--non-interactive',
        dest='non_interactive',
        action='store_true',
        default=False,
        help='Do not ask for confirmation before each phase (default: False)'
    )
    parser.add_argument(
        '--page-size',
        type=int,
        default=100,
        help='Rules requested per page (default: 100, max: 500)'
    )
    parser.add_argument(
        '--timeout',
        type=float,
        default=30,
        help='Per-request timeout in seconds (default: 30)'
    )
    parser.add_argument(
        '--publish-timeout',
        type=float,
        default=600,
        help='Maximum wait for the publish task in seconds (default: 600)'
    )
    parser.add_argument(
        '--poll-interval',
        type=float,
        default=2,
        help='Seconds between publish task polls (default: 2)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        default=False,
        help='Enable debug logging (default: False)'
    )
    parser.add_argument('--log-file', help='Log file name (default: log to console only)')
    parser.add_argument(
        '--excel-report',
        help='Write candidates, outcome and failures to an Excel workbook (e.g., report.xlsx)'
    )

    return parser.parse_args(argv)


def build_parameters(args: argparse.Namespace) -> RunParameters:
    """
    Turn parsed arguments into validated run parameters.

    Validation runs before the password prompt so a bad window is reported
    without asking for credentials first.
    """
    params = RunParameters(
        server=args.server,
        user=args.user,
        password=args.password or os.environ.get(PASSWORD_ENV) or "",
        layer=args.layer,
        disable_months=args.disable_months,
        delete_months=args.delete_months,
        dry_run=args.dry_run,
        commit=args.commit,
        non_interactive=args.non_interactive,
        port=args.port,
        audit_field=args.audit_field,
        page_size=args.page_size,
        timeout=args.timeout,
        publish_timeout=args.publish_timeout,
        poll_interval=args.poll_interval,
    ).validate()
    if not params.password:
        password = getpass.getpass(f"Password for {args.user}@{args.server}: ")
        params = dataclasses.replace(params, password=password)
    return params


def print_summary(result: RunResult) -> None:
    print("\n" + "=" * 60)
    print("OPERATION SUMMARY")
    print("=" * 60)
    for line in summary_lines(result):
        print(line)

    if result.parameters.dry_run:
        for label, rules in (("Would disable", result.action_set.to_disable),
                             ("Would delete", result.action_set.to_delete)):
            print(f"\n{label}:")
            print(format_rules_table(rules))
        print("\nDRY RUN COMPLETED - No changes were made.")
    elif result.decision is CommitDecision.LEFT_PENDING:
        print("\nChanges were NOT published. Review and publish them from the session on the server.")

    problems = ([result.fatal_error] if result.fatal_error else []) + result.errors + result.warnings
    for error in problems:
        print(f"\nERROR ({error.kind}): {ERROR_MESSAGES.get(error.kind, 'Unexpected failure.')}")
        print(f"  {error}")
    print("=" * 60)


def main(argv: Optional[List[str]] = None) -> int:
    """Main function."""
    args = parse_arguments(argv)
    setup_logging(args.debug, args.log_file)

    try:
        params = build_parameters(args)
    except ConfigurationError as e:
        print(f"Invalid arguments: {e}", file=sys.stderr)
        return 2

    if params.dry_run:
        print("DRY RUN MODE - No changes will be made")

    run = RuleCleanupRun(
        params,
        confirm=confirm_prompt,
        on_fetch_page=_fetch_progress,
        on_mutation=_mutation_progress,
    )
    result = run.execute()
    print_summary(result)

    if args.excel_report:
        export_to_excel(result, args.excel_report)

    return result.exit_code
