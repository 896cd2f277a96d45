"""Per-organization accrual detection rules."""

from dataclasses import fields, replace
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog

from monthend.accruals.models import AccrualRule, utc_now
from monthend.storage.base import RuleRepository

logger = structlog.get_logger(__name__)

_LIST_FIELDS = ("excluded_accounts", "excluded_vendors", "include_accounts")
_EDITABLE_FIELDS = tuple(
    f.name for f in fields(AccrualRule) if f.name not in ("org_id", "updated_at")
)


def default_rule_fields() -> dict[str, Any]:
    """The full default rule as editable fields."""
    defaults = AccrualRule.defaults("")
    return {name: getattr(defaults, name) for name in _EDITABLE_FIELDS}


class AccrualRuleStore:
    """Reads and merges accrual rules over an injected repository."""

    def __init__(self, repository: RuleRepository):
        self._repository = repository

    async def get(self, org_id: str) -> AccrualRule:
        """Stored rule for the org, or an unsaved default rule."""
        rule = await self._repository.get(org_id)
        if rule is None:
            return AccrualRule.defaults(org_id)
        return rule

    async def save(self, org_id: str, **changes: Any) -> AccrualRule:
        """Merge changes onto the current rule, persist and re-read it.

        List fields are replaced wholesale when provided. Scalar fields keep
        their previous value when passed as None.

        Raises:
            ValueError: Unknown field name or out-of-range value.
        """
        unknown = set(changes) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown accrual rule fields: {', '.join(sorted(unknown))}")

        current = await self.get(org_id)
        merged: dict[str, Any] = {}
        for name, value in changes.items():
            if value is None:
                continue
            if name in _LIST_FIELDS:
                merged[name] = tuple(str(item) for item in value)
            elif name == "min_amount":
                try:
                    merged[name] = Decimal(str(value))
                except InvalidOperation as e:
                    raise ValueError(f"min_amount is not a number: {value!r}") from e
                if not merged[name].is_finite():
                    raise ValueError(f"min_amount must be a finite number: {value!r}")
            else:
                merged[name] = value

        rule = replace(current, **merged, updated_at=utc_now())
        await self._repository.upsert(rule)
        logger.info("accrual_rules_saved", org_id=org_id, fields=sorted(merged))
        return await self.get(org_id)

    async def reset_to_defaults(self, org_id: str) -> AccrualRule:
        return await self.save(org_id, **default_rule_fields())
