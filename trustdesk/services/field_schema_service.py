"""Client field schema discovery.

The fields offered to template authors come from whichever discovery
strategy succeeds first, in order: the database information schema, a
sample client record, the ``CLIENT_SCHEMA_CONFIG`` setting and finally a
built-in default. The winning result is cached in an injected ``TTLCache``.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trustdesk.core.cache import TTLCache
from trustdesk.core.config import settings
from trustdesk.core.database import async_session_maker
from trustdesk.repositories.client_repository import ClientRepository
from trustdesk.services.templating.value_map import ADDRESS_FIELDS
from trustdesk.utils.logging import get_logger

LOGGER = get_logger(__name__)

CACHE_KEY = "client_schema"

SYSTEM_COLUMNS = frozenset({"id", "created_at", "updated_at", "extra_fields"})

POSTGRES_TYPES = {
    "character varying": "string",
    "varchar": "string",
    "text": "text",
    "integer": "number",
    "bigint": "number",
    "numeric": "number",
    "decimal": "number",
    "real": "number",
    "double precision": "number",
    "boolean": "boolean",
    "date": "date",
    "timestamp": "datetime",
    "timestamp without time zone": "datetime",
    "timestamp with time zone": "datetime",
    "uuid": "uuid",
    "json": "json",
    "jsonb": "json",
}

CATEGORIES = {
    "personal": ("first_name", "last_name", "full_name", "middle_name", "date_of_birth", "gender", "title"),
    "contact": ("email", "phone", "mobile", "address", "city", "state", "postal_code", "country", "zip"),
    "professional": ("occupation", "company", "job_title", "department", "employer", "position"),
    "financial": ("income", "net_worth", "account_number", "bank_name", "tax_id", "ssn", "salary", "assets"),
    "legal": ("citizenship", "passport_number", "drivers_license", "legal_status", "id_number"),
    "relationship": ("spouse_name", "emergency_contact", "relationship_manager", "referral_source", "next_of_kin"),
    "system": ("status", "client_type", "current_date", "current_year"),
}

SPECIAL_LABELS = {
    "ssn": "SSN",
    "tax_id": "Tax ID",
    "id": "ID",
    "uuid": "UUID",
    "url": "URL",
    "dob": "Date of Birth",
    "poc": "Point of Contact",
    "tel": "Telephone",
    "mobile": "Mobile Phone",
}

DEFAULT_CLIENT_FIELDS = (
    ("first_name", "string", False),
    ("last_name", "string", False),
    ("email", "string", True),
    ("phone", "string", True),
    ("address_line_1", "string", True),
    ("address_line_2", "string", True),
    ("city", "string", True),
    ("state", "string", True),
    ("postal_code", "string", True),
    ("country", "string", True),
    ("date_of_birth", "date", True),
    ("occupation", "string", True),
    ("company", "string", True),
    ("notes", "text", True),
    ("status", "string", False),
    ("client_type", "string", False),
)

_DATE_VALUE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATETIME_VALUE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}")


def generate_field_label(field_name: str) -> str:
    """``"date_of_birth"`` -> ``"Date Of Birth"``; known abbreviations are spelled out."""
    special = SPECIAL_LABELS.get(field_name.lower())
    if special:
        return special
    return " ".join(word.capitalize() for word in field_name.split("_") if word)


def categorize_field(field_name: str) -> str:
    lowered = field_name.lower()
    for category, keywords in CATEGORIES.items():
        if any(keyword in lowered for keyword in keywords):
            return category
    if lowered.startswith("custom_") or lowered.startswith("ext_") or "_custom" in lowered:
        return "custom"
    return "other"


def infer_type(value: Any) -> str:
    if value is None:
        return "string"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, datetime):
        return "datetime"
    if isinstance(value, date):
        return "date"
    if isinstance(value, (dict, list)):
        return "json"
    value = str(value)
    if _DATE_VALUE.match(value):
        return "date"
    if _DATETIME_VALUE.match(value):
        return "datetime"
    if "@" in value and "." in value.split("@")[-1]:
        return "email"
    return "text" if len(value) > 255 else "string"


@dataclass
class SchemaField:
    """One client field offered for placeholder binding."""
    name: str
    type: str = "string"
    nullable: bool = True
    label: str = ""
    category: str = "other"
    computed: bool = False

    def __post_init__(self):
        self.label = self.label or generate_field_label(self.name)
        if self.category == "other":
            self.category = categorize_field(self.name)


@dataclass
class FieldSchema:
    fields: List[SchemaField] = field(default_factory=list)
    method: str = "unknown"

    @property
    def names(self) -> List[str]:
        return [f.name for f in self.fields]


class SchemaStrategy(Protocol):
    name: str

    async def attempt(self) -> Optional[List[SchemaField]]: ...


class InformationSchemaStrategy:
    """Reads column metadata for the clients table from information_schema."""

    name = "information_schema"

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None, table: str = "clients"):
        self.session_factory = session_factory or async_session_maker
        self.table = table

    async def attempt(self) -> Optional[List[SchemaField]]:
        async with self.session_factory() as session:
            result = await session.execute(
                text(
                    "SELECT column_name, data_type, is_nullable FROM information_schema.columns "
                    "WHERE table_name = :table AND table_schema = 'public' ORDER BY ordinal_position"
                ),
                {"table": self.table},
            )
            rows = result.all()

        return [
            SchemaField(
                name=column_name,
                type=POSTGRES_TYPES.get(data_type.lower(), "string"),
                nullable=is_nullable == "YES",
            )
            for column_name, data_type, is_nullable in rows
            if column_name not in SYSTEM_COLUMNS
        ]


class SampleRecordStrategy:
    """Infers fields from the values of any one stored client."""

    name = "sample_based"

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory or async_session_maker

    async def attempt(self) -> Optional[List[SchemaField]]:
        async with self.session_factory() as session:
            row = await ClientRepository(session).get_sample()
        if row is None:
            return None

        values = {column.name: getattr(row, column.key) for column in row.__table__.columns}
        values.update(row.extra_fields or {})
        return [
            SchemaField(name=name, type=infer_type(value))
            for name, value in values.items()
            if name not in SYSTEM_COLUMNS and not isinstance(value, (dict, list))
        ]


class ConfiguredSchemaStrategy:
    """Fields declared in the ``CLIENT_SCHEMA_CONFIG`` JSON setting."""

    name = "configuration"

    def __init__(self, config: Optional[str] = None):
        self.config = config if config is not None else settings.schema_discovery.client_schema_config

    async def attempt(self) -> Optional[List[SchemaField]]:
        if not self.config:
            return None
        entries = json.loads(self.config)
        return [
            SchemaField(
                name=entry["name"],
                type=entry.get("type", "string"),
                nullable=entry.get("nullable", True),
            )
            for entry in entries
        ]


class DefaultSchemaStrategy:
    """Built-in client fields; always succeeds."""

    name = "default"

    async def attempt(self) -> Optional[List[SchemaField]]:
        return [SchemaField(name=name, type=type_, nullable=nullable) for name, type_, nullable in DEFAULT_CLIENT_FIELDS]


def computed_fields(base_fields: Sequence[SchemaField]) -> List[SchemaField]:
    """Derived fields available whenever their inputs exist."""
    names = {f.name for f in base_fields}
    computed = []
    if {"first_name", "last_name"} <= names:
        computed.append(SchemaField(name="full_name", label="Full Name", category="personal", computed=True))
    if names.intersection(ADDRESS_FIELDS):
        computed.append(SchemaField(name="full_address", label="Full Address", category="contact", computed=True))
    computed.append(SchemaField(name="current_date", type="date", category="system", computed=True))
    computed.append(SchemaField(name="current_year", type="number", category="system", computed=True))
    return computed


def default_strategies() -> List[SchemaStrategy]:
    return [
        InformationSchemaStrategy(),
        SampleRecordStrategy(),
        ConfiguredSchemaStrategy(),
        DefaultSchemaStrategy(),
    ]


class FieldSchemaService:
    """Ordered-fallback client schema discovery with an explicit cache."""

    def __init__(
        self,
        strategies: Optional[Sequence[SchemaStrategy]] = None,
        cache: Optional[TTLCache] = None,
        ttl: Optional[float] = None,
    ):
        """Initialize the service.

        Args:
            strategies: Discovery strategies, tried in order
            cache: Cache for the discovered schema; a new one is created if omitted
            ttl: Lifetime of a cached schema in seconds when creating the cache
        """
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        if cache is None:
            cache = TTLCache(ttl if ttl is not None else settings.schema_discovery.cache_ttl)
        self.cache = cache
        self.logger = LOGGER

    async def get_schema(self) -> FieldSchema:
        """Return the cached schema or discover it."""
        cached = self.cache.get(CACHE_KEY)
        if cached is not None:
            return cached

        schema = await self._discover()
        self.cache.set(CACHE_KEY, schema)
        return schema

    async def refresh(self) -> FieldSchema:
        """Rediscover the schema regardless of the cache."""
        self.cache.invalidate(CACHE_KEY)
        return await self.get_schema()

    def clear(self) -> None:
        self.cache.clear()

    async def is_valid_field(self, field_name: str) -> bool:
        return field_name in (await self.get_schema()).names

    async def fields_by_category(self, category: str) -> List[SchemaField]:
        return [f for f in (await self.get_schema()).fields if f.category == category]

    def metadata(self) -> Dict[str, Any]:
        cached = self.cache.get(CACHE_KEY)
        return {
            "is_cached": cached is not None,
            "discovery_method": cached.method if cached else None,
            "field_count": len(cached.fields) if cached else 0,
            "age_seconds": self.cache.age(CACHE_KEY),
            "ttl_seconds": self.cache.ttl,
        }

    async def _discover(self) -> FieldSchema:
        for strategy in self.strategies:
            try:
                fields = await strategy.attempt()
            except Exception as e:
                self.logger.warning(
                    f"Schema discovery strategy '{strategy.name}' failed: {e}",
                    extra={"strategy": strategy.name},
                )
                continue

            if fields:
                schema = FieldSchema(fields=list(fields) + computed_fields(fields), method=strategy.name)
                self.logger.info(
                    f"Schema discovery completed using {strategy.name} with {len(schema.fields)} fields"
                )
                return schema

        self.logger.error("All schema discovery strategies failed, using built-in fields")
        fields = await DefaultSchemaStrategy().attempt()
        return FieldSchema(fields=fields + computed_fields(fields), method=DefaultSchemaStrategy.name)
