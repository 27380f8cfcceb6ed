"""Unit tests for PlaceholderSubstitutionEngine."""

import re

import pytest

from trustdesk.schemas.records import CustomFieldDefinition
from trustdesk.services.templating.substitution_engine import (
    PlaceholderSubstitutionEngine,
    extract_placeholders,
    label_to_field_name,
    normalize_field_name,
)

TOKEN = re.compile(r"\{\{[^{}]*\}\}")


@pytest.fixture
def engine() -> PlaceholderSubstitutionEngine:
    return PlaceholderSubstitutionEngine()


class TestSubstitution:
    """Direct and wrapped placeholder replacement."""

    def test_wrapped_and_bare_forms(self, engine):
        content = 'Dear <span class="field-placeholder">{{full_name}}</span>, signed on {{signing_date}}.'

        result = engine.substitute(content, {"full_name": "Ada Lovelace", "signing_date": "2024-01-01"})

        assert result.rendered == "Dear Ada Lovelace, signed on 2024-01-01."
        assert result.unresolved == []
        assert result.resolved_count == 2
        assert result.fully_resolved

    def test_wrapped_form_with_extra_attributes(self, engine):
        content = '<p><span data-field="x" class="field-placeholder highlight">{{ city }}</span></p>'

        result = engine.substitute(content, {"city": "Paris"})

        assert result.rendered == "<p>Paris</p>"

    def test_field_name_is_case_insensitive(self, engine):
        result = engine.substitute("{{First_Name}}", {"first_name": "Ada"})

        assert result.rendered == "Ada"
        assert result.fuzzy_matches == {}

    def test_duplicates_all_replaced(self, engine):
        content = "{{name}} / {{name}} / {{name}}"

        result = engine.substitute(content, {"name": "Ada"})

        assert result.rendered == "Ada / Ada / Ada"
        assert result.resolved_count == 3

    def test_value_containing_braces_is_not_rescanned(self, engine):
        """A substituted value is never scanned for further placeholders."""
        result = engine.substitute("{{a}} and {{b}}", {"a": "{{b}}", "b": "B"})

        assert result.rendered == "{{b}} and B"
        assert result.unresolved == []

    def test_empty_value_counts_as_resolved(self, engine):
        result = engine.substitute("[{{middle_name}}]", {"middle_name": ""})

        assert result.rendered == "[]"
        assert result.unresolved == []
        assert result.resolved_count == 1

    def test_none_value_renders_empty(self, engine):
        result = engine.substitute("{{notes}}", {"notes": None})
        assert result.rendered == ""

    def test_merged_map_is_final(self, engine):
        """The engine applies no precedence of its own."""
        result = engine.substitute("{{full_name}}", {"full_name": "Custom Override"})
        assert result.rendered == "Custom Override"


class TestFuzzyMatching:
    """Normalized fallback matching."""

    def test_punctuation_and_case_differences(self, engine):
        result = engine.substitute("{{Client-Name}} {{postalcode}}", {"client_name": "Ada", "postal_code": "123"})

        assert result.rendered == "Ada 123"
        assert result.fuzzy_matches == {"Client-Name": "client_name", "postalcode": "postal_code"}

    def test_normalize_field_name(self):
        assert normalize_field_name("Client-Name 2") == "clientname2"
        assert label_to_field_name("Signing Date") == "signing_date"


class TestSentinels:
    """Unresolved placeholders are flagged, never dropped."""

    def test_unknown_placeholder(self, engine):
        result = engine.substitute("Ref: {{policy_ref}}", {})

        assert result.rendered == "Ref: [POLICY_REF_NOT_FOUND]"
        assert result.unresolved == ["policy_ref"]
        assert result.missing_values == []

    def test_known_custom_field_without_value(self, engine):
        definitions = [CustomFieldDefinition(name="signing_date", label="Signing Date")]

        result = engine.substitute("On {{signing_date}}", {}, definitions)

        assert result.rendered == "On [Signing Date - NO VALUE PROVIDED]"
        assert result.missing_values == ["signing_date"]

    def test_definition_matched_by_label(self, engine):
        definitions = [CustomFieldDefinition(name="date_signed", label="Witness Name")]

        result = engine.substitute("{{witness_name}}", {}, definitions)

        assert result.rendered == "[Witness Name - NO VALUE PROVIDED]"

    def test_definition_without_label_uses_name(self, engine):
        result = engine.substitute("{{beneficiary}}", {}, [CustomFieldDefinition(name="beneficiary")])
        assert result.rendered == "[beneficiary - NO VALUE PROVIDED]"

    def test_unresolved_listed_once(self, engine):
        result = engine.substitute("{{x}} {{x}}", {})

        assert result.unresolved == ["x"]
        assert result.rendered == "[X_NOT_FOUND] [X_NOT_FOUND]"


class TestInvariants:
    """Totality and monotonicity."""

    CONTENT = '<p>{{a}} {{B}} <b class="field-placeholder">{{c}}</b> {{d-e}} {{a}}</p>'

    def test_no_placeholder_survives(self, engine):
        for values in ({}, {"a": "1"}, {"a": "1", "b": "2", "c": "3", "de": "4"}):
            result = engine.substitute(self.CONTENT, values)
            assert TOKEN.search(result.rendered) is None

    def test_more_values_never_increase_unresolved(self, engine):
        smaller = engine.substitute(self.CONTENT, {"a": "1"})
        larger = engine.substitute(self.CONTENT, {"a": "1", "c": "3"})

        assert set(larger.unresolved) <= set(smaller.unresolved)
        assert len(larger.unresolved) < len(smaller.unresolved)


class TestAnomalies:
    """Malformed syntax is left alone and reported."""

    def test_empty_placeholder(self, engine):
        result = engine.substitute("a {{}} b", {})

        assert result.rendered == "a {{}} b"
        assert result.anomalies == ["{{}}"]
        assert result.unresolved == []

    def test_whitespace_placeholder_gets_sentinel(self, engine):
        result = engine.substitute("a {{   }} b", {})

        assert result.rendered == "a [   _NOT_FOUND] b"
        assert result.unresolved == ["   "]
        assert result.anomalies == []
        assert TOKEN.search(result.rendered) is None

    def test_nested_braces(self, engine):
        result = engine.substitute("x {{outer {{inner}} }} y", {"inner": "I"})

        assert "I" in result.rendered
        assert result.anomalies

    def test_never_raises_on_garbage(self, engine):
        result = engine.substitute("{{ {{ }} }} {{{{", {})
        assert isinstance(result.rendered, str)


class TestExtractPlaceholders:
    def test_first_seen_order_distinct(self):
        content = '{{b}} <span class="field-placeholder">{{a}}</span> {{b}} {{ c }}'
        assert extract_placeholders(content) == ["b", "a", "c"]

    def test_empty_content(self):
        assert extract_placeholders("") == []
