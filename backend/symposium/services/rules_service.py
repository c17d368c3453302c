from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import joinedload
from typing import Optional
import logging

from ..core.config import settings
from ..core.exceptions import RulesNotFound
from ..models.event import Event, EventRules, Round, RoundRules
from ..schemas.rules import EffectiveRules, RULE_FIELDS

logger = logging.getLogger(__name__)


def merge_rules(
    event_rules: Optional[EventRules],
    round_rules: Optional[RoundRules],
    default_max_warning_count: Optional[int] = None,
) -> EffectiveRules:
    """Round-level values win over event-level ones; unset everywhere means the default"""
    defaults = EffectiveRules(
        max_warning_count=(
            default_max_warning_count
            if default_max_warning_count is not None
            else settings.default_max_warning_count
        )
    )
    resolved = {}
    for field in RULE_FIELDS:
        value = getattr(round_rules, field, None) if round_rules is not None else None
        if value is None and event_rules is not None:
            value = getattr(event_rules, field, None)
        if value is None:
            value = getattr(defaults, field)
        resolved[field] = value
    return EffectiveRules(**resolved)


class RuleResolver:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(self, round_id: str) -> EffectiveRules:
        result = await self.db.execute(
            select(Round)
            .options(joinedload(Round.rules))
            .filter(Round.id == round_id)
        )
        round_ = result.scalars().first()
        if round_ is None:
            raise RulesNotFound(f"Round {round_id} not found", round_id=round_id)

        event_result = await self.db.execute(
            select(Event)
            .options(joinedload(Event.rules))
            .filter(Event.id == round_.event_id)
        )
        event = event_result.scalars().first()
        if event is None:
            raise RulesNotFound(f"Event for round {round_id} not found", round_id=round_id)

        rules = merge_rules(event.rules, round_.rules)
        logger.debug(f"Resolved rules for round {round_id}: {rules.model_dump()}")
        return rules
