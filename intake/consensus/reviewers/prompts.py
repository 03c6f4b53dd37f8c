import json
from typing import Any, Dict, List

COLUMN_REVIEW_SYSTEM_PROMPT = """You are a careful reviewer of spreadsheet column mappings for sales orders.

You receive the candidate columns of one order sheet: their ids, header texts and a few sample values. Decide which candidate column holds each requested order field.

## Rules

1. Choose only from the candidate ids you were given. Never invent a column id.
2. Candidate ids correspond to `candidate_headers` in the same order.
3. Use `null` for `selected_column_id` when no candidate fits a field.
4. Do not invent values; judge only from the headers and samples shown.
5. Headers may be in English or Farsi; sample numbers may use Persian digits or a comma decimal separator.

## Output Format

Return exactly one JSON object, with no extra keys:

```json
{
  "mappings": [
    {"field": "quantity", "selected_column_id": "C", "confidence": 0.9, "reasoning": "header 'Qty' and integer samples"}
  ],
  "issues": [
    {"code": "UPPER_SNAKE_CASE_CODE", "severity": "info|warning|error", "evidence": "candidate id or short note"}
  ],
  "overall_confidence": 0.85
}
```

- `confidence` and `overall_confidence` are numbers between 0 and 1.
- Give one mapping per requested field; omit a field only if you cannot judge it at all.
"""

FIELD_DESCRIPTIONS: Dict[str, str] = {
    "customer": "customer / buyer name",
    "sku": "seller item code (SKU, part number)",
    "gtin": "barcode number (GTIN / EAN / UPC)",
    "product_name": "product description or name",
    "quantity": "ordered quantity",
    "unit_price": "price per unit",
    "line_total": "line amount (quantity x unit price)",
    "subtotal": "order subtotal before tax",
    "tax": "tax amount",
    "total": "order grand total",
}


def build_column_review_prompt(request: Dict[str, Any], fields: List[str]) -> str:
    """User message for one review request."""
    described = [f"- {f}: {FIELD_DESCRIPTIONS.get(f, f)}" for f in fields]
    return (
        "## Fields to map\n"
        + "\n".join(described)
        + "\n\n## Review request\n"
        + json.dumps(request, ensure_ascii=False, indent=2)
    )
