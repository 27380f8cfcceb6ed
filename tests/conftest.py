"""Pytest configuration and shared fixtures."""

from datetime import date

import pytest

from tests.fakes import (
    FIXED_NOW,
    InMemoryObjectStorage,
    InMemoryRecordStore,
    InMemorySignedStorage,
)
from trustdesk.schemas.records import Client, CustomFieldDefinition, Template, TemplateStatus
from trustdesk.services.task.lifecycle_manager import TaskLifecycleManager


@pytest.fixture
def sample_client() -> Client:
    return Client(
        id="client-1",
        first_name="Jane",
        last_name="Smith",
        email="jane@example.com",
        phone="555-0100",
        address_line_1="1 Main St",
        city="Springfield",
        postal_code="12345",
        country="USA",
        date_of_birth=date(1980, 5, 17),
    )


@pytest.fixture
def trust_deed_template() -> Template:
    return Template(
        id="tpl-trust",
        name="Trust Deed",
        status=TemplateStatus.ACTIVE,
        html_content="<p>This deed is made for {{client_name}} on {{signing_date}} in {{city}}.</p>",
        custom_fields=[
            CustomFieldDefinition(name="signing_date", label="Signing Date", type="date", required=True),
        ],
    )


@pytest.fixture
def poa_template() -> Template:
    return Template(
        id="tpl-poa",
        name="Power of Attorney",
        status=TemplateStatus.ACTIVE,
        html_content="<p>I, {{first_name}} {{last_name}}, appoint {{attorney_name}}.</p>",
        custom_fields=[
            CustomFieldDefinition(name="attorney_name", label="Attorney Name", required=True),
        ],
    )


@pytest.fixture
def inactive_template() -> Template:
    return Template(id="tpl-old", name="Old Letter", status=TemplateStatus.DRAFT, html_content="<p>{{email}}</p>")


@pytest.fixture
def record_store(sample_client, trust_deed_template, poa_template, inactive_template) -> InMemoryRecordStore:
    store = InMemoryRecordStore()
    store.add_client(sample_client)
    store.add_template(trust_deed_template)
    store.add_template(poa_template)
    store.add_template(inactive_template)
    return store


@pytest.fixture
def document_storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest.fixture
def additional_storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest.fixture
def signed_storage() -> InMemorySignedStorage:
    return InMemorySignedStorage()


@pytest.fixture
def manager(record_store, document_storage, signed_storage, additional_storage) -> TaskLifecycleManager:
    return TaskLifecycleManager(
        store=record_store,
        document_storage=document_storage,
        signed_storage=signed_storage,
        additional_storage=additional_storage,
        timeout=0.5,
        concurrency=2,
        clock=lambda: FIXED_NOW,
    )
