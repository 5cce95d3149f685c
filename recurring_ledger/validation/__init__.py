"""Rule validation package."""

from recurring_ledger.validation.validator import InvalidRuleError, RuleValidator

__all__ = ["InvalidRuleError", "RuleValidator"]
