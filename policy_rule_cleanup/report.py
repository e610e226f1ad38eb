"""Console tables and Excel export of a cleanup run."""

import datetime
import logging
from typing import List, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from .models import Rule, RunResult

HEADER_FILLS = {
    "disable": "4472C4",
    "delete": "C00000",
    "failures": "FF9900",
}


def format_rules_table(rules: Sequence[Rule]) -> str:
    """
    Format rules into a fixed-width table.

    Args:
        rules: Rules to list

    Returns:
        Formatted table string
    """
    if not rules:
        return "No rules selected."

    number_width = max(len("No."), max(len(str(rule.rule_number)) for rule in rules))
    name_width = min(max(len("Rule Name"), max(len(rule.name) for rule in rules)), 35)
    uid_width = max(len("Rule UID"), max(len(rule.uid) for rule in rules))
    hits_width = max(len("Hits"), max(len(str(rule.hit_count)) for rule in rules))
    date_width = len("Disabled On")

    separator = "+" + "+".join("-" * (w + 2) for w in
                               (number_width, name_width, uid_width, hits_width, date_width)) + "+"
    row_format = (f"| {{:>{number_width}}} | {{:<{name_width}.{name_width}}} | {{:<{uid_width}}} "
                  f"| {{:>{hits_width}}} | {{:<{date_width}}} |")

    lines = [
        separator,
        row_format.format("No.", "Rule Name", "Rule UID", "Hits", "Disabled On"),
        separator,
    ]
    for rule in rules:
        disabled_on = rule.effective_disable_date
        lines.append(row_format.format(
            rule.rule_number,
            rule.name,
            rule.uid,
            rule.hit_count,
            disabled_on.isoformat() if disabled_on else "-",
        ))
    lines.append(separator)
    return "\n".join(lines)


def summary_lines(result: RunResult) -> List[str]:
    """Plain-text run summary for the console."""
    params = result.parameters
    lines = [
        f"Layer:                  {params.layer}",
        f"Rules analyzed:         {result.total_rules}",
        f"Disable candidates:     {len(result.action_set.to_disable)}",
        f"Delete candidates:      {len(result.action_set.to_delete)}",
    ]
    for phase in result.phases:
        line = f"{phase.action.capitalize()} phase:".ljust(24) + phase.status.value
        if phase.outcome is not None:
            line += (f" ({len(phase.outcome.succeeded_uids)} succeeded, "
                     f"{len(phase.outcome.failed_uids)} failed)")
        lines.append(line)
    if result.decision is not None:
        lines.append(f"Outcome:                {result.decision.value}")
    return lines


def _header_row(sheet, headers: Sequence[str], color: str) -> None:
    for col_num, header in enumerate(headers, 1):
        cell = sheet.cell(row=1, column=col_num)
        cell.value = header
        cell.font = Font(bold=True, color="FFFFFF")
        cell.fill = PatternFill(start_color=color, end_color=color, fill_type="solid")
        cell.alignment = Alignment(horizontal="center", vertical="center")
    sheet.freeze_panes = "A2"


RULE_HEADERS = [
    "No.", "Rule Name", "Rule UID", "Hits", "Enabled", "Disabled On", "Source",
    "Destination", "Service", "Action", "Track", "Install On", "Comments",
    "Creator", "Created", "Last Modifier", "Last Modified",
]
RULE_WIDTHS = [6, 30, 38, 8, 9, 12, 30, 30, 25, 10, 10, 20, 40, 15, 22, 15, 22]


def _rule_sheet(workbook: Workbook, title: str, rules: Sequence[Rule], color: str) -> None:
    sheet = workbook.create_sheet(title)
    _header_row(sheet, RULE_HEADERS, color)
    for row_num, rule in enumerate(rules, 2):
        disabled_on = rule.effective_disable_date
        values = [
            rule.rule_number, rule.name, rule.uid, rule.hit_count, rule.enabled,
            disabled_on.isoformat() if disabled_on else "",
            ", ".join(rule.source), ", ".join(rule.destination), ", ".join(rule.service),
            rule.action, rule.track, ", ".join(rule.install_on), rule.comments,
            rule.creator, rule.creation_time, rule.last_modifier, rule.last_modify_time,
        ]
        for col_num, value in enumerate(values, 1):
            sheet.cell(row=row_num, column=col_num, value=value)
        sheet.cell(row=row_num, column=13).alignment = Alignment(wrap_text=True)
    for col_num, width in enumerate(RULE_WIDTHS, 1):
        sheet.column_dimensions[sheet.cell(row=1, column=col_num).column_letter].width = width


def export_to_excel(result: RunResult, excel_file: str) -> bool:
    """
    Write the run to an Excel workbook.

    Sheets: Operation Summary, Disable Candidates, Delete Candidates and Failures.

    Args:
        result: Finished run
        excel_file: Path of the workbook to create

    Returns:
        True when the workbook was written; failures are logged, not raised
    """
    params = result.parameters
    wb = Workbook()

    ws_summary = wb.active
    ws_summary.title = "Operation Summary"
    ws_summary["A1"] = "Unused Access Rule Cleanup - Operation Summary"
    ws_summary["A1"].font = Font(bold=True, size=14, color="FFFFFF")
    ws_summary["A1"].fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")

    rows = [
        ("Server:", params.server),
        ("Layer:", params.layer),
        ("Analysis Date:", datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")),
        ("Mode:", "DRY RUN (No changes made)" if params.dry_run else "LIVE EXECUTION"),
        ("Disable Window (months):", params.disable_months if params.disable_months else "-"),
        ("Delete Threshold (months):", params.delete_months if params.delete_months else "-"),
        ("Rules Analyzed:", result.total_rules),
        ("Disable Candidates:", len(result.action_set.to_disable)),
        ("Delete Candidates:", len(result.action_set.to_delete)),
    ]
    for phase in result.phases:
        rows.append((f"{phase.action.capitalize()} Phase:", phase.status.value))
        if phase.outcome is not None:
            rows.append((f"Rules {phase.action.capitalize()}d:", len(phase.outcome.succeeded_uids)))
            rows.append((f"{phase.action.capitalize()} Failures:", len(phase.outcome.failed_uids)))
    rows.append(("Outcome:", result.decision.value if result.decision else "-"))

    for row, (label, value) in enumerate(rows, 3):
        ws_summary[f"A{row}"] = label
        ws_summary[f"B{row}"] = value
        ws_summary[f"A{row}"].font = Font(bold=True)
    if params.dry_run:
        ws_summary["B6"].font = Font(color="FF0000", bold=True)
    ws_summary.column_dimensions["A"].width = 30
    ws_summary.column_dimensions["B"].width = 50

    _rule_sheet(wb, "Disable Candidates", result.action_set.to_disable, HEADER_FILLS["disable"])
    _rule_sheet(wb, "Delete Candidates", result.action_set.to_delete, HEADER_FILLS["delete"])

    ws_failures = wb.create_sheet("Failures")
    _header_row(ws_failures, ["Kind", "Message"], HEADER_FILLS["failures"])
    problems = list(result.errors) + list(result.warnings)
    if result.fatal_error is not None:
        problems.insert(0, result.fatal_error)
    for row_num, error in enumerate(problems, 2):
        ws_failures.cell(row=row_num, column=1, value=error.kind)
        ws_failures.cell(row=row_num, column=2, value=str(error))
        ws_failures.cell(row=row_num, column=2).alignment = Alignment(wrap_text=True)
    ws_failures.column_dimensions["A"].width = 18
    ws_failures.column_dimensions["B"].width = 100

    try:
        wb.save(excel_file)
    except OSError as e:
        logging.error(f"Error creating Excel report: {str(e)}")
        print(f"Error creating Excel report: {str(e)}")
        return False
    logging.info(f"Excel report saved to: {excel_file}")
    print(f"\nExcel report saved to: {excel_file}")
    return True
