"""Unit tests for FieldMappingSuggester."""

import json
from unittest.mock import AsyncMock

import pytest

from trustdesk.core.exceptions import APIClientError
from trustdesk.services.field_mapping_service import FieldMappingSuggester

HTML = "<p>Dear {{ClientName}}, your email {{email}} and policy {{policy_no}} are on file.</p>"
FIELDS = ["first_name", "last_name", "full_name", "email"]


class TestRuleBased:
    """Suggestions without an LLM."""

    def test_exact_normalized_and_pattern(self):
        suggestions = FieldMappingSuggester.rule_based(["email", "First-Name", "surname", "zzz"], FIELDS)
        by_placeholder = {s.placeholder: s for s in suggestions}

        assert (by_placeholder["email"].field, by_placeholder["email"].confidence) == ("email", 1.0)
        assert by_placeholder["email"].source == "exact"
        assert (by_placeholder["First-Name"].field, by_placeholder["First-Name"].confidence) == ("first_name", 0.9)
        assert by_placeholder["surname"].field == "last_name"
        assert by_placeholder["surname"].source == "rule-based"
        assert "zzz" not in by_placeholder

    @pytest.mark.asyncio
    async def test_disabled_llm(self):
        llm = AsyncMock()
        suggester = FieldMappingSuggester(llm_client=llm, enabled=False)

        report = await suggester.suggest(HTML, available_fields=FIELDS)

        llm.generate_content.assert_not_called()
        assert report.llm_used is False
        assert [s.placeholder for s in report.suggestions][0] == "email"
        assert report.auto_mappings() == {"email": "email", "ClientName": "full_name"}

    @pytest.mark.asyncio
    async def test_no_placeholders(self):
        report = await FieldMappingSuggester(enabled=False).suggest("<p>plain</p>")
        assert report.suggestions == []
        assert report.overall_confidence == 0.0


class TestLLMSuggestions:
    """Optional LLM enrichment."""

    @pytest.mark.asyncio
    async def test_llm_adds_and_upgrades(self):
        llm = AsyncMock()
        llm.generate_content.return_value = "```json\n" + json.dumps([
            {"placeholder": "policy_no", "suggestedField": "policy_number", "confidence": 0.7, "reasoning": "policy"},
            {"placeholder": "ClientName", "suggestedField": "full_name", "confidence": 0.99},
            {"placeholder": "email", "suggestedField": "email", "confidence": 0.5},
            {"placeholder": "unknown", "suggestedField": "x", "confidence": 1.0},
        ]) + "\n```"
        suggester = FieldMappingSuggester(llm_client=llm, enabled=True)

        report = await suggester.suggest(HTML, available_fields=FIELDS)
        by_placeholder = {s.placeholder: s for s in report.suggestions}

        assert report.llm_used is True
        assert by_placeholder["policy_no"].source == "llm"
        assert by_placeholder["ClientName"].source == "llm-enhanced"
        assert by_placeholder["ClientName"].confidence == 0.99
        assert by_placeholder["email"].source == "exact"
        assert "unknown" not in by_placeholder
        prompt = llm.generate_content.await_args.args[0]
        assert "policy_no" in prompt

    @pytest.mark.asyncio
    async def test_llm_failure_degrades_to_rules(self):
        llm = AsyncMock()
        llm.generate_content.side_effect = APIClientError("rate limited")

        report = await FieldMappingSuggester(llm_client=llm, enabled=True).suggest(HTML, available_fields=FIELDS)

        assert report.llm_used is False
        assert {s.placeholder for s in report.suggestions} == {"email", "ClientName"}

    @pytest.mark.asyncio
    async def test_llm_garbage_response(self):
        llm = AsyncMock()
        llm.generate_content.return_value = "I cannot help with that."

        report = await FieldMappingSuggester(llm_client=llm, enabled=True).suggest(HTML, available_fields=FIELDS)

        assert report.llm_used is False
        assert report.suggestions
