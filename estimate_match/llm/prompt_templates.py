"""
Prompt Templates
================

LangChain prompt template for invoice-to-estimate matching.

The whole batch (invoices plus every estimate candidate) goes into one
prompt; the model answers with a single JSON object.
"""

import json
from collections.abc import Sequence
from typing import Any

from langchain_core.prompts import PromptTemplate

from estimate_match.schemas.domain import EstimateLineItem, Invoice

# =============================================================================
# Invoice Matching Prompt
# =============================================================================

MATCH_TEMPLATE = """You are an expert construction project analyst. Your task is to match invoice line items to project estimate line items based on their descriptions, quantities, costs, and context.

INVOICES TO MATCH:
{invoices_json}

PROJECT ESTIMATES:
{estimates_json}

INSTRUCTIONS:
1. For each invoice line item, find the best matching estimate line item, or null if none fits
2. Consider: description similarity, quantity compatibility, cost reasonableness, trade/category alignment
3. Assign confidence scores: 0.9+ (exact match), 0.7-0.9 (high confidence), 0.5-0.7 (medium), 0.3-0.5 (low), <0.3 (no match)
4. Provide clear reasoning for each match
5. Only use ids that appear above

REQUIRED JSON OUTPUT FORMAT:
{{
  "matches": [
    {{
      "invoiceLineItemId": "item_id",
      "estimateLineItemId": "estimate_id_or_null",
      "confidence": 0.85,
      "reasoning": "Clear explanation of why this match was made",
      "matchType": "exact|partial|conceptual|none"
    }}
  ]
}}

MATCH TYPES:
- exact: Perfect description and quantity match
- partial: Similar description, some quantity/cost variance
- conceptual: Related work but different specifics
- none: No reasonable match found

Respond with ONLY the JSON output, no additional text."""

MATCH_PROMPT = PromptTemplate.from_template(MATCH_TEMPLATE)


# =============================================================================
# Helper functions
# =============================================================================


def format_invoices(invoices: Sequence[Invoice]) -> list[dict[str, Any]]:
    """Invoice data as shown to the model."""
    return [
        {
            "invoiceId": invoice.id,
            "invoiceNumber": invoice.invoice_number,
            "supplier": invoice.supplier_name,
            "lineItems": [
                {
                    "id": item.id,
                    "description": item.description,
                    "quantity": item.quantity,
                    "unitPrice": item.unit_price,
                    "totalPrice": item.total_price,
                    "category": item.category.value,
                }
                for item in invoice.line_items
            ],
        }
        for invoice in invoices
    ]


def format_estimates(estimates: Sequence[EstimateLineItem]) -> list[dict[str, Any]]:
    """Estimate candidates as shown to the model."""
    return [
        {
            "id": estimate.id,
            "description": estimate.description,
            "tradeName": estimate.trade_name,
            "quantity": estimate.quantity,
            "unit": estimate.unit,
            "materialCost": estimate.material_cost_est,
            "laborCost": estimate.labor_cost_est,
            "equipmentCost": estimate.equipment_cost_est,
            "totalCost": estimate.total_cost,
        }
        for estimate in estimates
    ]


def build_match_prompt(
    invoices: Sequence[Invoice],
    estimates: Sequence[EstimateLineItem],
) -> str:
    """
    Render the matching prompt for a batch.

    Args:
        invoices: Invoices whose line items need matching
        estimates: Every estimate candidate

    Returns:
        Prompt text
    """
    return MATCH_PROMPT.format(
        invoices_json=json.dumps(format_invoices(invoices), indent=2, ensure_ascii=False),
        estimates_json=json.dumps(format_estimates(estimates), indent=2, ensure_ascii=False),
    )
