"""Field-mapping suggestions for template placeholders.

Rule-based matches are always produced. When enabled, an LLM is asked for
additional suggestions and its answers replace rule-based ones only when they
carry a higher confidence. Suggestions are advisory: nothing in generation
depends on them, so every failure degrades to the rule-based result.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from trustdesk.core.config import settings
from trustdesk.core.exceptions import APIClientError
from trustdesk.core.llm_client import OpenRouterClient
from trustdesk.services.templating.substitution_engine import extract_placeholders, normalize_field_name
from trustdesk.utils.json_parser import parse_json_safely
from trustdesk.utils.logging import get_logger

LOGGER = get_logger(__name__)

CONTEXT_RADIUS = 100
AUTO_APPLY_THRESHOLD = 0.8

# First matching rule wins
PATTERN_RULES = [
    (re.compile(r"^(client_?name|full_?name|name)$", re.I), "full_name", 0.9),
    (re.compile(r"^(first_?name|fname)$", re.I), "first_name", 0.95),
    (re.compile(r"^(last_?name|surname|lname)$", re.I), "last_name", 0.95),
    (re.compile(r"^(email|email_?address|e_?mail)$", re.I), "email", 0.95),
    (re.compile(r"^(phone|telephone|tel|phone_?number)$", re.I), "phone", 0.9),
    (re.compile(r"^(address|client_?address)$", re.I), "full_address", 0.8),
    (re.compile(r"^(city|client_?city)$", re.I), "city", 0.9),
    (re.compile(r"^(postal_?code|zip|zipcode)$", re.I), "postal_code", 0.9),
    (re.compile(r"^(occupation|job|profession)$", re.I), "occupation", 0.85),
    (re.compile(r"^(company|employer|organization)$", re.I), "company", 0.85),
    (re.compile(r"^(current_?date|today|date)$", re.I), "current_date", 0.9),
    (re.compile(r"^(current_?year|year)$", re.I), "current_year", 0.9),
    (re.compile(r"client.*name", re.I), "full_name", 0.8),
    (re.compile(r"beneficiary.*name", re.I), "full_name", 0.8),
    (re.compile(r"contact.*email", re.I), "email", 0.8),
    (re.compile(r"contact.*phone", re.I), "phone", 0.8),
]

SYSTEM_PROMPT = """You map placeholder fields in legal and business documents to client database fields.

Available fields:
{fields}

For each placeholder, suggest the most appropriate field with a confidence score between 0 and 1.

Respond with a JSON array only, in this exact format:
[
  {{"placeholder": "client_name", "suggestedField": "full_name", "confidence": 0.95, "reasoning": "..."}}
]"""


@dataclass
class MappingSuggestion:
    placeholder: str
    field: str
    confidence: float
    source: str
    reasoning: Optional[str] = None


@dataclass
class MappingReport:
    """Ranked suggestions, highest confidence first."""
    suggestions: List[MappingSuggestion] = field(default_factory=list)
    llm_used: bool = False

    @property
    def overall_confidence(self) -> float:
        if not self.suggestions:
            return 0.0
        return sum(s.confidence for s in self.suggestions) / len(self.suggestions)

    def auto_mappings(self, threshold: float = AUTO_APPLY_THRESHOLD) -> Dict[str, str]:
        """Placeholder -> field for suggestions confident enough to apply unreviewed."""
        return {s.placeholder: s.field for s in self.suggestions if s.confidence >= threshold}


class FieldMappingSuggester:
    """Suggests which client or custom field each placeholder should bind to."""

    def __init__(self, llm_client: Optional[OpenRouterClient] = None, enabled: Optional[bool] = None):
        self.enabled = settings.llm.enabled if enabled is None else enabled
        self.llm_client = llm_client
        if self.enabled and self.llm_client is None and settings.llm.openrouter_api_key:
            self.llm_client = OpenRouterClient()

    async def suggest(
        self,
        html: str,
        placeholders: Optional[Sequence[str]] = None,
        available_fields: Sequence[str] = (),
    ) -> MappingReport:
        """Suggest mappings for ``placeholders`` (detected from ``html`` when omitted)."""
        names = list(placeholders) if placeholders is not None else extract_placeholders(html)
        if not names:
            return MappingReport()

        combined: Dict[str, MappingSuggestion] = {
            s.placeholder: s for s in self.rule_based(names, available_fields)
        }

        llm_used = False
        if self.enabled and self.llm_client is not None:
            llm_suggestions = await self._llm_suggestions(html, names, available_fields)
            llm_used = bool(llm_suggestions)
            for suggestion in llm_suggestions:
                existing = combined.get(suggestion.placeholder)
                if existing is None or suggestion.confidence > existing.confidence:
                    suggestion.source = "llm-enhanced" if existing else "llm"
                    combined[suggestion.placeholder] = suggestion

        ranked = sorted(combined.values(), key=lambda s: s.confidence, reverse=True)
        return MappingReport(suggestions=ranked, llm_used=llm_used)

    @staticmethod
    def rule_based(placeholders: Sequence[str], available_fields: Sequence[str] = ()) -> List[MappingSuggestion]:
        """Exact and normalized name matches first, then the pattern table."""
        normalized = {normalize_field_name(name): name for name in available_fields}
        suggestions = []

        for placeholder in placeholders:
            if placeholder in available_fields:
                suggestions.append(MappingSuggestion(placeholder, placeholder, 1.0, "exact"))
                continue

            match = normalized.get(normalize_field_name(placeholder))
            if match is not None:
                suggestions.append(MappingSuggestion(placeholder, match, 0.9, "normalized"))
                continue

            for pattern, target, confidence in PATTERN_RULES:
                if pattern.search(placeholder):
                    suggestions.append(
                        MappingSuggestion(
                            placeholder,
                            target,
                            confidence,
                            "rule-based",
                            reasoning=f'"{placeholder}" matches the pattern for {target}',
                        )
                    )
                    break

        return suggestions

    async def _llm_suggestions(
        self, html: str, placeholders: Sequence[str], available_fields: Sequence[str]
    ) -> List[MappingSuggestion]:
        prompt = "Suggest field mappings for these placeholders:\n" + "\n".join(
            f'- {name} (context: "{_context(html, name)}")' for name in placeholders
        )
        system = SYSTEM_PROMPT.format(fields="\n".join(f"- {name}" for name in available_fields) or "- (none)")

        try:
            content = await self.llm_client.generate_content(prompt, system_instruction=system)
        except (APIClientError, ValueError) as e:
            LOGGER.warning(f"Field mapping suggestion request failed: {e}")
            return []

        parsed = parse_json_safely(content)
        if isinstance(parsed, dict):
            parsed = parsed.get("mappings")
        if not isinstance(parsed, list):
            LOGGER.warning("Unexpected field mapping suggestion format")
            return []

        wanted = set(placeholders)
        suggestions = []
        for item in parsed:
            if not isinstance(item, dict):
                continue
            placeholder = item.get("placeholder")
            target = item.get("suggestedField")
            confidence = item.get("confidence")
            if placeholder not in wanted or not target or not isinstance(confidence, (int, float)):
                continue
            suggestions.append(
                MappingSuggestion(
                    placeholder=placeholder,
                    field=target,
                    confidence=max(0.0, min(1.0, float(confidence))),
                    source="llm",
                    reasoning=item.get("reasoning"),
                )
            )
        return suggestions


def _context(html: str, name: str) -> str:
    position = html.find(name)
    if position == -1:
        return ""
    start = max(0, position - CONTEXT_RADIUS)
    return re.sub(r"<[^>]+>|\s+", " ", html[start:position + len(name) + CONTEXT_RADIUS]).strip()
