from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from iamp.coercion import to_boolean


@dataclass(frozen=True)
class QCRule:
    column: str
    label: str
    help: str


# Flags are computed upstream in the source workbook; this list only maps them to labels.
QC_RULES: Tuple[QCRule, ...] = (
    QCRule(
        column="QC - Missing assessment date",
        label="Missing assessment date (status filled but date blank)",
        help="Fill Date of phone assessment when Phone call status is set.",
    ),
    QCRule(
        column="QC - Current phone length",
        label="Current Shawish phone length not 8 digits",
        help="Fix phone numbers (often missing leading 0) or confirm number is correct.",
    ),
    QCRule(
        column="QC - Phone status/details mismatch",
        label="Phone call status/details mismatch or invalid status value",
        help="Ensure status is valid; if status is not Answer, No response details should be filled.",
    ),
    QCRule(
        column="QC - Living status/new focal point mismatch",
        label="Living status/new focal point mismatch or invalid value",
        help=(
            "If living=No, new focal point name & phone must be filled. "
            "If living=Yes, new focal point fields should be blank."
        ),
    ),
    QCRule(
        column="QC - New focal point missing assessment date",
        label="New focal point: status filled but assessment date blank",
        help="Fill Date of phone assessment with New Focal point when New FP status is set.",
    ),
    QCRule(
        column="QC - New FP status/details mismatch",
        label="New focal point: status/details mismatch or invalid status value",
        help="Ensure New FP status is valid; if status is not Answer, No response details should be filled.",
    ),
    QCRule(
        column="QC - Record status mismatch",
        label="Record status mismatch or invalid value",
        help="Record status should be filled when phone call status is filled (Finish/Need Follow-up).",
    ),
    QCRule(
        column="QC - Totals mismatch",
        label="Totals mismatch (structures/HH/IND vs components)",
        help="Check totals (structures/HH/IND) match sum of components (Tents/Shelters/Prefab/etc).",
    ),
    QCRule(
        column="QC - HH size outlier (>10 ind/hh or ind<hh)",
        label="Household size outlier (>10 ind/HH or ind < HH)",
        help="Review Total households vs Total individuals for possible data entry errors.",
    ),
    QCRule(
        column="QC - Latrines missing (HH>0 & latrines 0/blank)",
        label="Latrines missing (HH>0 but latrines = 0/blank)",
        help="Fill Number of Latrines when households exist (HH>0).",
    ),
    QCRule(
        column="QC - Latrines > HH",
        label="Latrines greater than households",
        help="Review latrine count relative to households.",
    ),
    QCRule(
        column="QC - High population (>500 ind)",
        label="High population outlier (>500 individuals)",
        help="Confirm Total individuals — unusually high compared with most sites.",
    ),
    QCRule(
        column="QC - Invalid Site Status",
        label="Invalid Site Status",
        help="Site Status should be one of: Active / Inactive / Fully Demolished.",
    ),
    QCRule(
        column="QC - Invalid PCode format",
        label="Invalid PCode format",
        help="PCode should follow #####-##-###.",
    ),
)

_RULES_BY_LABEL = {rule.label: rule for rule in QC_RULES}


def evaluate_qc_flags(row: Mapping[str, Any], rules: Sequence[QCRule] = QC_RULES) -> Tuple[str, ...]:
    """Labels of every rule whose flag column is truthy, in rule order."""
    return tuple(rule.label for rule in rules if to_boolean(row.get(rule.column)))


def rule_for_label(label: str) -> Optional[QCRule]:
    return _RULES_BY_LABEL.get(label)


def remediation_for(label: str) -> str:
    rule = rule_for_label(label)
    return rule.help if rule is not None else ""


def qc_rule_counts(records: Iterable[Any], rules: Sequence[QCRule] = QC_RULES) -> List[Tuple[QCRule, int]]:
    """Per-rule count of records carrying the flag. Accepts normalized records or raw dicts."""
    rows = [r if isinstance(r, Mapping) else r.values for r in records]
    return [(rule, sum(1 for row in rows if to_boolean(row.get(rule.column)))) for rule in rules]
