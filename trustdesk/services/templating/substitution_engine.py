"""Placeholder substitution engine.

Turns template HTML plus a final value map into a rendered document.
Resolution runs in three phases over a single tokenization of the input:

1. exact match of the placeholder name against the value map keys,
   case-insensitively;
2. fuzzy match on normalized names (lower-cased, non-alphanumerics removed);
3. sentinel replacement for whatever is still unresolved.

Values are spliced in only when the token list is joined back together, so a
value that itself contains ``{{...}}`` is never scanned again.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from trustdesk.schemas.records import CustomFieldDefinition
from trustdesk.utils.logging import get_logger

LOGGER = get_logger(__name__)


# Wrapped form first so the whole element is consumed, then the bare form.
PLACEHOLDER_PATTERN = re.compile(
    r"<(?P<tag>[A-Za-z][\w-]*)\b[^>]*=\s*[\"'][^\"']*\bfield-placeholder\b[^\"']*[\"'][^>]*>"
    r"\s*\{\{(?P<wrapped>[^{}]*)\}\}\s*</(?P=tag)\s*>"
    r"|\{\{(?P<bare>[^{}]*)\}\}"
)

STRAY_BRACES_PATTERN = re.compile(r"\{\{[^{}]{0,40}|[^{}]{0,40}\}\}")

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_field_name(name: str) -> str:
    """Comparison key for the fuzzy pass: lower-case, alphanumerics only."""
    return _NON_ALNUM.sub("", name.lower())


def label_to_field_name(label: str) -> str:
    """``"Signing Date"`` -> ``"signing_date"``."""
    return _NON_ALNUM.sub("_", label.lower())


@dataclass
class _Token:
    """A recognised placeholder occurrence."""
    name: str
    raw: str
    value: Optional[str] = None
    resolved_by: Optional[str] = None


@dataclass
class SubstitutionResult:
    """Outcome of rendering one template."""
    rendered: str
    resolved_count: int
    unresolved: List[str] = field(default_factory=list)
    missing_values: List[str] = field(default_factory=list)
    fuzzy_matches: Dict[str, str] = field(default_factory=dict)
    anomalies: List[str] = field(default_factory=list)

    @property
    def fully_resolved(self) -> bool:
        return not self.unresolved


def extract_placeholders(content: str) -> List[str]:
    """List distinct placeholder names in first-seen order."""
    names: List[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(content or ""):
        name = (match.group("wrapped") if match.group("wrapped") is not None else match.group("bare")).strip()
        if name and name not in names:
            names.append(name)
    return names


class PlaceholderSubstitutionEngine:
    """Deterministic text transformation with no I/O.

    The engine applies no precedence of its own: the value map it receives is
    treated as final truth.
    """

    def substitute(
        self,
        template_content: str,
        value_map: Mapping[str, Any],
        field_definitions: Sequence[CustomFieldDefinition] = (),
    ) -> SubstitutionResult:
        """Render ``template_content`` against ``value_map``.

        Args:
            template_content: HTML with ``{{name}}`` placeholders
            value_map: Merged field values; None is rendered as an empty string
            field_definitions: Custom fields declared by the template, used to
                label placeholders that are known but have no value

        Returns:
            SubstitutionResult with the rendered text and resolution report
        """
        values = {str(key): "" if value is None else str(value) for key, value in value_map.items()}
        parts, anomalies = self._tokenize(template_content or "")
        tokens = [part for part in parts if isinstance(part, _Token)]

        self._resolve_exact(tokens, values)
        fuzzy_matches = self._resolve_fuzzy(tokens, values)
        unresolved, missing_values = self._apply_sentinels(tokens, field_definitions)

        rendered = "".join(part if isinstance(part, str) else part.value for part in parts)
        resolved_count = sum(1 for token in tokens if token.resolved_by in ("exact", "fuzzy"))

        LOGGER.debug(
            f"Substituted {resolved_count} placeholders, {len(unresolved)} unresolved",
            extra={"unresolved": unresolved, "fuzzy_matches": fuzzy_matches},
        )

        return SubstitutionResult(
            rendered=rendered,
            resolved_count=resolved_count,
            unresolved=unresolved,
            missing_values=missing_values,
            fuzzy_matches=fuzzy_matches,
            anomalies=anomalies,
        )

    def _tokenize(self, content: str) -> tuple:
        parts: List[Union[str, _Token]] = []
        anomalies: List[str] = []
        cursor = 0

        for match in PLACEHOLDER_PATTERN.finditer(content):
            literal = content[cursor:match.start()]
            if literal:
                parts.append(literal)
                anomalies.extend(self._stray_braces(literal))

            raw_name = match.group("wrapped") if match.group("wrapped") is not None else match.group("bare")
            name = raw_name.strip() or raw_name
            if name:
                parts.append(_Token(name=name, raw=match.group(0)))
            else:
                # {{}}: keep the text and flag it for review
                parts.append(match.group(0))
                anomalies.append(match.group(0))
            cursor = match.end()

        tail = content[cursor:]
        if tail:
            parts.append(tail)
            anomalies.extend(self._stray_braces(tail))

        return parts, anomalies

    @staticmethod
    def _stray_braces(literal: str) -> List[str]:
        if "{{" not in literal and "}}" not in literal:
            return []
        return [snippet.strip() for snippet in STRAY_BRACES_PATTERN.findall(literal) if snippet.strip()]

    @staticmethod
    def _resolve_exact(tokens: Iterable[_Token], values: Dict[str, str]) -> None:
        folded: Dict[str, str] = {}
        for key in values:
            folded.setdefault(key.lower(), key)

        for token in tokens:
            key = token.name if token.name in values else folded.get(token.name.lower())
            if key is not None:
                token.value = values[key]
                token.resolved_by = "exact"

    @staticmethod
    def _resolve_fuzzy(tokens: Iterable[_Token], values: Dict[str, str]) -> Dict[str, str]:
        normalized: Dict[str, str] = {}
        for key in values:
            norm = normalize_field_name(key)
            if norm:
                normalized.setdefault(norm, key)

        matches: Dict[str, str] = {}
        for token in tokens:
            if token.resolved_by is not None:
                continue
            key = normalized.get(normalize_field_name(token.name))
            if key is None:
                continue
            token.value = values[key]
            token.resolved_by = "fuzzy"
            matches[token.name] = key
            LOGGER.debug(f"Fuzzy-matched {{{{{token.name}}}}} to field '{key}'")
        return matches

    @staticmethod
    def _apply_sentinels(tokens: Iterable[_Token], field_definitions: Sequence[CustomFieldDefinition]) -> tuple:
        unresolved: List[str] = []
        missing_values: List[str] = []

        for token in tokens:
            if token.resolved_by is not None:
                continue

            definition = _find_definition(token.name, field_definitions)
            if definition is not None:
                token.value = f"[{definition.display_label} - NO VALUE PROVIDED]"
                if token.name not in missing_values:
                    missing_values.append(token.name)
            else:
                token.value = f"[{token.name.upper()}_NOT_FOUND]"
            token.resolved_by = "sentinel"

            if token.name not in unresolved:
                unresolved.append(token.name)

        if unresolved:
            LOGGER.warning(f"Unmapped placeholders: {unresolved}")
        return unresolved, missing_values


def _find_definition(name: str, field_definitions: Sequence[CustomFieldDefinition]) -> Optional[CustomFieldDefinition]:
    lowered = name.lower()
    for definition in field_definitions:
        if definition.name and definition.name.lower() == lowered:
            return definition
        if definition.label and label_to_field_name(definition.label) == lowered:
            return definition
    return None
