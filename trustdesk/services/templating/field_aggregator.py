"""Cross-template custom field aggregation.

Templates are authored independently, so two templates bound to the same task
may both declare a field. Fields are deduplicated by case-insensitive name
using the first-seen definition, and every disagreement on ``type``,
``required`` or ``label`` is reported as a conflict rather than merged away.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from trustdesk.schemas.records import CustomFieldDefinition
from trustdesk.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Attributes that must agree for two definitions of a field to be compatible.
# default_value and description are deliberately not compared.
CONFLICT_ATTRIBUTES = ("type", "required", "label")


@dataclass
class TemplateFieldSource:
    """Custom field definitions declared by one template."""
    template_id: str
    template_name: str
    fields: List[CustomFieldDefinition] = field(default_factory=list)


@dataclass
class SourceTemplate:
    id: str
    name: str


@dataclass
class AggregatedField:
    """One deduplicated field with every template that declares it."""
    name: str
    label: Optional[str]
    type: str
    required: bool
    default_value: Optional[str] = None
    description: Optional[str] = None
    source_templates: List[SourceTemplate] = field(default_factory=list)

    @property
    def source_template_ids(self) -> List[str]:
        return [source.id for source in self.source_templates]

    def to_definition(self) -> CustomFieldDefinition:
        return CustomFieldDefinition(
            name=self.name,
            label=self.label,
            type=self.type,
            required=self.required,
            default_value=self.default_value,
            description=self.description,
        )


@dataclass
class ConflictDefinition:
    template_id: str
    template_name: str
    label: Optional[str]
    type: str
    required: bool


@dataclass
class FieldConflict:
    """Incompatible definitions of the same field name."""
    name: str
    definitions: List[ConflictDefinition] = field(default_factory=list)


@dataclass
class AggregationStats:
    total: int
    unique: int
    conflicts: int
    templates_with_fields: int = 0


@dataclass
class AggregationResult:
    """Result of aggregating custom fields across templates."""
    fields: List[AggregatedField]
    fields_by_template: Dict[str, List[CustomFieldDefinition]]
    conflicts: List[FieldConflict]
    stats: AggregationStats

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def definitions(self) -> List[CustomFieldDefinition]:
        return [aggregated.to_definition() for aggregated in self.fields]


class CustomFieldAggregator:
    """Combines field definitions from the templates bound to one task."""

    def aggregate(self, sources: Sequence[TemplateFieldSource]) -> AggregationResult:
        """Aggregate custom fields from multiple templates.

        Args:
            sources: Per-template field definitions, in binding order

        Returns:
            AggregationResult with deduplicated fields and conflict records
        """
        merged: Dict[str, AggregatedField] = {}
        grouped: Dict[str, List[ConflictDefinition]] = {}
        fields_by_template: Dict[str, List[CustomFieldDefinition]] = {}
        total = 0

        for source in sources:
            fields_by_template[source.template_id] = list(source.fields)

            for definition in source.fields:
                if not definition.name:
                    continue
                total += 1
                key = definition.name.lower()

                grouped.setdefault(key, []).append(
                    ConflictDefinition(
                        template_id=source.template_id,
                        template_name=source.template_name,
                        label=definition.label,
                        type=definition.type,
                        required=definition.required,
                    )
                )

                if key not in merged:
                    merged[key] = AggregatedField(
                        name=definition.name,
                        label=definition.label,
                        type=definition.type,
                        required=definition.required,
                        default_value=definition.default_value,
                        description=definition.description,
                        source_templates=[SourceTemplate(id=source.template_id, name=source.template_name)],
                    )
                else:
                    merged[key].source_templates.append(
                        SourceTemplate(id=source.template_id, name=source.template_name)
                    )

        conflicts = [
            FieldConflict(name=merged[key].name, definitions=definitions)
            for key, definitions in grouped.items()
            if _has_conflict(definitions)
        ]

        if conflicts:
            LOGGER.warning(
                f"Detected {len(conflicts)} custom field conflicts",
                extra={"fields": [conflict.name for conflict in conflicts]},
            )

        return AggregationResult(
            fields=list(merged.values()),
            fields_by_template=fields_by_template,
            conflicts=conflicts,
            stats=AggregationStats(
                total=total,
                unique=len(merged),
                conflicts=len(conflicts),
                templates_with_fields=sum(1 for source in sources if source.fields),
            ),
        )


def _has_conflict(definitions: List[ConflictDefinition]) -> bool:
    if len(definitions) < 2:
        return False
    first = definitions[0]
    return any(
        getattr(other, attribute) != getattr(first, attribute)
        for other in definitions[1:]
        for attribute in CONFLICT_ATTRIBUTES
    )
