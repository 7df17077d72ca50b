"""
Unit Tests for Prompt Templates
===============================
"""

import json

from estimate_match.llm.prompt_templates import (
    MATCH_PROMPT,
    build_match_prompt,
    format_estimates,
    format_invoices,
)


class TestMatchPrompt:
    """Tests for the matching prompt."""

    def test_template_variables(self):
        assert set(MATCH_PROMPT.input_variables) == {"invoices_json", "estimates_json"}

    def test_prompt_contains_batch_data(self, invoice, estimates):
        prompt = build_match_prompt([invoice], estimates)

        assert "ABC Concrete Supplies Ltd" in prompt
        assert '"id": "li-office"' in prompt
        assert '"id": "est-framing"' in prompt
        assert '"invoiceLineItemId": "item_id"' in prompt

    def test_format_invoices(self, invoice):
        formatted = format_invoices([invoice])

        assert formatted[0]["supplier"] == "ABC Concrete Supplies Ltd"
        assert formatted[0]["lineItems"][0]["category"] == "MATERIAL"
        assert formatted[0]["lineItems"][1]["totalPrice"] == 45

    def test_format_estimates(self, estimates):
        formatted = format_estimates(estimates)

        assert formatted[0]["totalCost"] == 3000
        assert formatted[1]["tradeName"] == "Carpentry"
        json.dumps(formatted)
