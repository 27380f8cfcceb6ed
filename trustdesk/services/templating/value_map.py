"""Merged value map for template population.

Sources are layered in a fixed order and later sources override earlier ones
on key collision:

1. client attributes
2. computed fields (``full_name``, ``full_address``, ``current_date``, ...)
3. template field defaults
4. task custom field values

Each custom field value is also exposed under its label-derived name
(``"Signing Date"`` -> ``signing_date``) unless that key is already taken.
"""

from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional, Sequence

from trustdesk.schemas.records import Client, CustomFieldDefinition
from trustdesk.services.templating.substitution_engine import label_to_field_name

# Standard client fields from the clients table
CLIENT_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "address_line_1",
    "address_line_2",
    "city",
    "state",
    "postal_code",
    "country",
    "date_of_birth",
    "occupation",
    "company",
    "notes",
    "status",
    "client_type",
)

COMPUTED_FIELDS = ("full_name", "full_address", "current_date", "current_year")

ADDRESS_FIELDS = ("address_line_1", "address_line_2", "city", "state", "postal_code", "country")


def is_client_field(field_name: str) -> bool:
    return field_name in CLIENT_FIELDS or field_name in COMPUTED_FIELDS


def format_date(value: date) -> str:
    """``date(2024, 1, 1)`` -> ``"January 1, 2024"``."""
    return f"{value:%B} {value.day}, {value.year}"


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (date, datetime)):
        return format_date(value)
    return str(value)


def build_full_address(client: Client) -> str:
    parts = [getattr(client, name) for name in ADDRESS_FIELDS]
    return ", ".join(str(part) for part in parts if part)


def client_values(client: Client) -> Dict[str, str]:
    """Client attributes, missing ones as empty strings."""
    values = {name: format_value(getattr(client, name)) for name in CLIENT_FIELDS}
    for name, value in client.extra.items():
        if isinstance(value, (list, dict)):
            continue
        values.setdefault(name, format_value(value))
    return values


def computed_values(client: Client, now: Optional[datetime] = None) -> Dict[str, str]:
    now = now or datetime.now()
    full_name = client.display_name
    current_date = format_date(now)
    return {
        "full_name": full_name,
        "client_name": full_name,
        "full_address": build_full_address(client),
        "current_date": current_date,
        "today": current_date,
        "current_year": str(now.year),
    }


def build_value_map(
    client: Client,
    custom_field_values: Optional[Mapping[str, Any]] = None,
    field_definitions: Sequence[CustomFieldDefinition] = (),
    now: Optional[datetime] = None,
) -> Dict[str, str]:
    """Merge every value source for one template into the final map."""
    value_map: Dict[str, str] = {}
    value_map.update(client_values(client))
    value_map.update(computed_values(client, now))

    for definition in field_definitions:
        if definition.default_value:
            value_map[definition.name] = str(definition.default_value)

    for key, value in (custom_field_values or {}).items():
        value_map[str(key)] = format_value(value)

    # Templates may spell a custom field by its label
    for definition in field_definitions:
        if definition.label and definition.name in value_map:
            value_map.setdefault(label_to_field_name(definition.label), value_map[definition.name])

    return value_map
