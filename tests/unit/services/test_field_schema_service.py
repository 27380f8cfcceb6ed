"""Unit tests for client field schema discovery."""

import json
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from trustdesk.core.cache import TTLCache
from trustdesk.services.field_schema_service import (
    ConfiguredSchemaStrategy,
    DefaultSchemaStrategy,
    FieldSchemaService,
    InformationSchemaStrategy,
    SchemaField,
    categorize_field,
    computed_fields,
    generate_field_label,
    infer_type,
)


class StubStrategy:
    def __init__(self, name, fields=None, error=None):
        self.name = name
        self.fields = fields
        self.error = error
        self.calls = 0

    async def attempt(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.fields


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestFieldHelpers:
    def test_labels(self):
        assert generate_field_label("date_of_birth") == "Date Of Birth"
        assert generate_field_label("ssn") == "SSN"
        assert generate_field_label("tax_id") == "Tax ID"

    def test_categories(self):
        assert categorize_field("first_name") == "personal"
        assert categorize_field("postal_code") == "contact"
        assert categorize_field("employer_name") == "professional"
        assert categorize_field("custom_risk_score") == "custom"
        assert categorize_field("favourite_colour") == "other"

    def test_infer_type(self):
        assert infer_type(True) == "boolean"
        assert infer_type(3.5) == "number"
        assert infer_type(date(2024, 1, 1)) == "date"
        assert infer_type("2024-01-01") == "date"
        assert infer_type("2024-01-01T10:00:00") == "datetime"
        assert infer_type("ada@example.com") == "email"
        assert infer_type("x" * 300) == "text"
        assert infer_type(None) == "string"

    def test_computed_fields(self):
        base = [SchemaField(name="first_name"), SchemaField(name="last_name"), SchemaField(name="city")]
        names = [f.name for f in computed_fields(base)]
        assert names == ["full_name", "full_address", "current_date", "current_year"]

    def test_computed_fields_without_inputs(self):
        names = [f.name for f in computed_fields([SchemaField(name="email")])]
        assert names == ["current_date", "current_year"]


class TestStrategies:
    """Individual discovery strategies."""

    @pytest.mark.asyncio
    async def test_information_schema(self):
        result = MagicMock()
        result.all.return_value = [
            ("id", "uuid", "NO"),
            ("first_name", "character varying", "YES"),
            ("date_of_birth", "date", "YES"),
            ("extra_fields", "jsonb", "YES"),
        ]
        session = AsyncMock()
        session.execute.return_value = result
        factory = MagicMock()
        factory.return_value.__aenter__.return_value = session

        fields = await InformationSchemaStrategy(session_factory=factory).attempt()

        assert [(f.name, f.type, f.nullable) for f in fields] == [
            ("first_name", "string", True),
            ("date_of_birth", "date", True),
        ]

    @pytest.mark.asyncio
    async def test_configured(self):
        config = json.dumps([{"name": "tax_id", "type": "string", "nullable": False}, {"name": "income"}])

        fields = await ConfiguredSchemaStrategy(config=config).attempt()

        assert [f.name for f in fields] == ["tax_id", "income"]
        assert fields[0].label == "Tax ID"
        assert fields[1].category == "financial"

    @pytest.mark.asyncio
    async def test_configured_empty(self):
        assert await ConfiguredSchemaStrategy(config="").attempt() is None

    @pytest.mark.asyncio
    async def test_default(self):
        fields = await DefaultSchemaStrategy().attempt()
        assert "email" in [f.name for f in fields]


class TestFieldSchemaService:
    """Ordered fallback and caching."""

    @pytest.mark.asyncio
    async def test_first_non_empty_strategy_wins(self):
        broken = StubStrategy("information_schema", error=RuntimeError("no db"))
        empty = StubStrategy("sample_based", fields=None)
        configured = StubStrategy("configuration", fields=[SchemaField(name="email")])
        never = StubStrategy("default", fields=[SchemaField(name="phone")])
        service = FieldSchemaService(strategies=[broken, empty, configured, never])

        schema = await service.get_schema()

        assert schema.method == "configuration"
        assert schema.names == ["email", "current_date", "current_year"]
        assert never.calls == 0

    @pytest.mark.asyncio
    async def test_all_strategies_fail(self):
        service = FieldSchemaService(strategies=[StubStrategy("broken", error=ValueError("bad"))])

        schema = await service.get_schema()

        assert schema.method == "default"
        assert "first_name" in schema.names

    @pytest.mark.asyncio
    async def test_cached_until_ttl(self):
        clock = FakeClock()
        strategy = StubStrategy("configuration", fields=[SchemaField(name="email")])
        service = FieldSchemaService(strategies=[strategy], cache=TTLCache(300, clock=clock))

        await service.get_schema()
        await service.get_schema()
        assert strategy.calls == 1
        assert service.metadata()["is_cached"] is True

        clock.now = 301
        await service.get_schema()
        assert strategy.calls == 2

    @pytest.mark.asyncio
    async def test_refresh_and_clear(self):
        strategy = StubStrategy("configuration", fields=[SchemaField(name="email")])
        service = FieldSchemaService(strategies=[strategy], ttl=300)

        await service.get_schema()
        await service.refresh()
        assert strategy.calls == 2

        service.clear()
        assert service.metadata() == {
            "is_cached": False,
            "discovery_method": None,
            "field_count": 0,
            "age_seconds": None,
            "ttl_seconds": 300,
        }

    @pytest.mark.asyncio
    async def test_queries(self):
        service = FieldSchemaService(strategies=[DefaultSchemaStrategy()], ttl=300)

        assert await service.is_valid_field("postal_code") is True
        assert await service.is_valid_field("shoe_size") is False
        personal = [f.name for f in await service.fields_by_category("personal")]
        assert "first_name" in personal
        assert "full_name" in personal

    def test_injected_cache_is_kept(self):
        cache = TTLCache(300)

        service = FieldSchemaService(strategies=[], cache=cache)

        assert len(cache) == 0
        assert service.cache is cache

    @pytest.mark.asyncio
    async def test_clear_on_shared_cache(self):
        cache = TTLCache(300)
        strategy = StubStrategy("configuration", fields=[SchemaField(name="email")])
        service = FieldSchemaService(strategies=[strategy], cache=cache)

        await service.get_schema()
        cache.clear()
        await service.get_schema()

        assert strategy.calls == 2
