"""Loads a task's templates and aggregates their custom fields."""

from typing import Optional, Sequence

from trustdesk.core.exceptions import ValidationError
from trustdesk.services.base_service import BaseService
from trustdesk.services.interfaces import RecordStore
from trustdesk.services.templating.field_aggregator import (
    AggregationResult,
    CustomFieldAggregator,
    TemplateFieldSource,
)


class FieldAggregationService(BaseService):
    """Resolves the custom fields an operator must fill in for a set of templates.

    Templates that are missing or not active are skipped with a warning; they
    cannot be generated either, so their fields are not asked for.
    """

    def __init__(self, store: RecordStore, aggregator: Optional[CustomFieldAggregator] = None):
        super().__init__()
        self.store = store
        self.aggregator = aggregator or CustomFieldAggregator()

    def validate(self, template_ids: Sequence[str]):
        if isinstance(template_ids, str):
            raise ValidationError("template_ids must be a sequence of ids, not a string")

    async def run(self, template_ids: Sequence[str]) -> AggregationResult:
        templates = await self.store.get_templates(list(template_ids))
        found = {template.id for template in templates}

        missing = [template_id for template_id in template_ids if template_id not in found]
        if missing:
            self.logger.warning(f"Templates not found during aggregation: {missing}")

        sources = []
        for template in templates:
            if not template.is_active:
                self.logger.warning(
                    f"Skipping inactive template '{template.name}'",
                    extra={"template_id": template.id},
                )
                continue
            sources.append(
                TemplateFieldSource(
                    template_id=template.id,
                    template_name=template.name,
                    fields=list(template.custom_fields),
                )
            )

        return self.aggregator.aggregate(sources)
