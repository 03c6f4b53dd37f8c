"""
Order validation: completeness and arithmetic consistency checks.

Produces Issue records only; it never changes values.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from intake.extraction.config import ParserConfig, DEFAULT_PARSER_CONFIG
from intake.extraction.synonyms import IDENTIFIER_FIELDS
from intake.ir import Customer, Issue, LineItem, SEVERITY_RANK, Totals


def within_tolerance(a: float, b: float, cfg: ParserConfig = DEFAULT_PARSER_CONFIG) -> bool:
    """``|a - b| <= max(abs_tol, rel_tol * max(|a|, |b|))``"""
    allowed = max(cfg.arithmetic_abs_tolerance, cfg.arithmetic_rel_tolerance * max(abs(a), abs(b)))
    return abs(a - b) <= allowed


def has_blocking_issues(issues: Iterable[Issue]) -> bool:
    return any(issue.severity == "blocker" for issue in issues)


def issue_counts(issues: Iterable[Issue]) -> Dict[str, int]:
    counts = {severity: 0 for severity in SEVERITY_RANK}
    for issue in issues:
        counts[issue.severity] = counts.get(issue.severity, 0) + 1
    return counts


def _refs(*ids: Optional[str]) -> List[str]:
    return [i for i in ids if i]


def validate_order(
    customer: Customer,
    line_items: List[LineItem],
    totals: Optional[Totals],
    mapped_fields: Iterable[str],
    cfg: ParserConfig = DEFAULT_PARSER_CONFIG,
) -> List[Issue]:
    """
    Validate an extracted order.

    Per-item checks only apply to columns that were mapped: an unmapped
    quantity column is already reported as ``MISSING_QUANTITY_COLUMN``.
    Zero quantities are valid and never reported.
    """
    mapped = set(mapped_fields)
    issues: List[Issue] = []

    if not customer.input_name:
        issues.append(Issue(
            code="MISSING_CUSTOMER",
            severity="error",
            message="No customer name found in the sheet",
            suggested_action="Add the customer name to the spreadsheet or provide it with the upload",
        ))

    if not line_items:
        issues.append(Issue(code="NO_LINE_ITEMS", severity="error", message="No line items were extracted"))

    check_identifier = any(f in mapped for f in IDENTIFIER_FIELDS)
    for item in line_items:
        row_refs = list(item.evidence.values())
        if "quantity" in mapped and item.quantity is None:
            issues.append(Issue(
                code="MISSING_QUANTITY",
                severity="error",
                message=f"Row {item.source_row_number}: quantity is missing",
                evidence_refs=row_refs,
            ))
        if check_identifier and not item.sku and not item.gtin:
            issues.append(Issue(
                code="MISSING_ITEM_IDENTIFIER",
                severity="error",
                message=f"Row {item.source_row_number}: neither SKU nor GTIN is present",
                evidence_refs=row_refs,
            ))
        if item.quantity is not None and item.quantity < 0:
            issues.append(Issue(
                code="NEGATIVE_QUANTITY",
                severity="warning",
                message=f"Row {item.source_row_number}: negative quantity {item.quantity:g}",
                evidence_refs=_refs(item.evidence.get("quantity")),
            ))
        if (
            item.quantity is not None
            and item.unit_price_source is not None
            and item.line_total_source is not None
        ):
            expected = item.quantity * item.unit_price_source
            if not within_tolerance(expected, item.line_total_source, cfg):
                issues.append(Issue(
                    code="ARITHMETIC_MISMATCH",
                    severity="warning",
                    message=(
                        f"Row {item.source_row_number}: quantity x unit price = {expected:.2f} "
                        f"but line total is {item.line_total_source:.2f}"
                    ),
                    evidence_refs=_refs(
                        item.evidence.get("quantity"),
                        item.evidence.get("unit_price_source"),
                        item.evidence.get("line_total_source"),
                    ),
                ))

    if totals is not None:
        line_totals = [i.line_total_source for i in line_items if i.line_total_source is not None]
        if totals.subtotal_source is not None and line_totals:
            summed = sum(line_totals)
            if not within_tolerance(summed, totals.subtotal_source, cfg):
                issues.append(Issue(
                    code="SUBTOTAL_MISMATCH",
                    severity="warning",
                    message=f"Sum of line totals {summed:.2f} differs from subtotal {totals.subtotal_source:.2f}",
                    evidence_refs=_refs(totals.evidence.get("subtotal_source")),
                ))
        if (
            totals.subtotal_source is not None
            and totals.tax_total_source is not None
            and totals.total_source is not None
        ):
            expected = totals.subtotal_source + totals.tax_total_source
            if not within_tolerance(expected, totals.total_source, cfg):
                issues.append(Issue(
                    code="TOTAL_MISMATCH",
                    severity="warning",
                    message=f"Subtotal + tax = {expected:.2f} but total is {totals.total_source:.2f}",
                    evidence_refs=_refs(
                        totals.evidence.get("subtotal_source"),
                        totals.evidence.get("tax_total_source"),
                        totals.evidence.get("total_source"),
                    ),
                ))
    return issues
