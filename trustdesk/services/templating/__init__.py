"""Templating package.

Pure document population logic with no I/O:
- PlaceholderSubstitutionEngine: renders ``{{name}}`` placeholders against a value map
- build_value_map: merges client, computed, default and custom values
- CustomFieldAggregator: reconciles custom fields declared by several templates
"""

from trustdesk.services.templating.field_aggregator import (
    AggregatedField,
    AggregationResult,
    AggregationStats,
    ConflictDefinition,
    CustomFieldAggregator,
    FieldConflict,
    TemplateFieldSource,
)
from trustdesk.services.templating.substitution_engine import (
    PlaceholderSubstitutionEngine,
    SubstitutionResult,
    extract_placeholders,
    label_to_field_name,
    normalize_field_name,
)
from trustdesk.services.templating.value_map import (
    CLIENT_FIELDS,
    COMPUTED_FIELDS,
    build_value_map,
    is_client_field,
)

__all__ = [
    "AggregatedField",
    "AggregationResult",
    "AggregationStats",
    "ConflictDefinition",
    "CustomFieldAggregator",
    "FieldConflict",
    "TemplateFieldSource",
    "PlaceholderSubstitutionEngine",
    "SubstitutionResult",
    "extract_placeholders",
    "label_to_field_name",
    "normalize_field_name",
    "CLIENT_FIELDS",
    "COMPUTED_FIELDS",
    "build_value_map",
    "is_client_field",
]
