"""
Row validation rules for account imports.

Each rule inspects one staging row's ``mapped_data`` and yields zero or more
``RuleResult`` objects. Rules run in a fixed order so a row's messages, and
therefore the whole validation report, are deterministic.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from .coerce import coerce_str, digits_only, parse_date, parse_decimal


class RuleSeverity(str, enum.Enum):
    """Whether a rule failure invalidates the row or only warns."""

    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class RuleResult:
    """
    Outcome from evaluating a single rule against a row.

    Attributes:
        rule_code: Stable identifier for the rule (e.g., `ACCT_BALANCE_REQUIRED`).
        severity: Error or warning (see `RuleSeverity`).
        message: Human-friendly summary shown in the validation report.
    """

    rule_code: str
    severity: RuleSeverity
    message: str


@dataclass(frozen=True)
class RowRule:
    """Declarative rule definition evaluated by the validator."""

    code: str
    description: str
    severity: RuleSeverity

    def evaluate(self, payload: Mapping[str, object | None]) -> Iterable[RuleResult]:
        """Return violations for the provided payload."""
        raise NotImplementedError

    def _result(self, message: str) -> list[RuleResult]:
        return [RuleResult(rule_code=self.code, severity=self.severity, message=message)]


_EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class OriginalAccountNumberRule(RowRule):
    """The creditor's account number identifies the debt and is mandatory."""

    def __init__(self) -> None:
        super().__init__(
            code="ACCT_ORIGINAL_NUMBER_REQUIRED",
            description="Original account number must be present.",
            severity=RuleSeverity.ERROR,
        )

    def evaluate(self, payload: Mapping[str, object | None]) -> Iterable[RuleResult]:
        if coerce_str(payload.get("original_account_number")):
            return []
        return self._result("Original account number is required")


class CurrentBalanceRule(RowRule):
    """Current balance must be present and numeric."""

    def __init__(self) -> None:
        super().__init__(
            code="ACCT_CURRENT_BALANCE",
            description="Current balance must be present and parseable as a number.",
            severity=RuleSeverity.ERROR,
        )

    def evaluate(self, payload: Mapping[str, object | None]) -> Iterable[RuleResult]:
        raw = coerce_str(payload.get("current_balance"))
        if not raw:
            return self._result("Current balance is required")
        if parse_decimal(raw) is None:
            return self._result("Current balance should be a number")
        return []


class SsnFormatRule(RowRule):
    def __init__(self) -> None:
        super().__init__(
            code="PERSON_SSN_FORMAT",
            description="SSN, when present, should contain exactly nine digits.",
            severity=RuleSeverity.WARNING,
        )

    def evaluate(self, payload: Mapping[str, object | None]) -> Iterable[RuleResult]:
        ssn = coerce_str(payload.get("ssn"))
        if not ssn or len(digits_only(ssn)) == 9:
            return []
        return self._result("SSN format may be invalid")


class DateFormatRule(RowRule):
    """Optional date column that should parse as a calendar date when filled."""

    def __init__(self, field: str, label: str) -> None:
        super().__init__(
            code=f"ACCT_{field.upper()}_FORMAT",
            description=f"{label} should be a valid calendar date.",
            severity=RuleSeverity.WARNING,
        )
        object.__setattr__(self, "field", field)
        object.__setattr__(self, "label", label)

    def evaluate(self, payload: Mapping[str, object | None]) -> Iterable[RuleResult]:
        value = coerce_str(payload.get(self.field))
        if not value or parse_date(value) is not None:
            return []
        return self._result(f"{self.label} format may be invalid")


class AccountNumberPresenceRule(RowRule):
    def __init__(self) -> None:
        super().__init__(
            code="ACCT_NUMBER_MISSING",
            description="Secondary account number is optional but recommended.",
            severity=RuleSeverity.WARNING,
        )

    def evaluate(self, payload: Mapping[str, object | None]) -> Iterable[RuleResult]:
        if coerce_str(payload.get("account_number")):
            return []
        return self._result("Account number is missing (optional)")


class PhoneFormatRule(RowRule):
    def __init__(self) -> None:
        super().__init__(
            code="PERSON_PHONE_FORMAT",
            description="Primary phone should contain 10 to 15 digits.",
            severity=RuleSeverity.WARNING,
        )

    def evaluate(self, payload: Mapping[str, object | None]) -> Iterable[RuleResult]:
        phone = coerce_str(payload.get("phone_primary"))
        if not phone or 10 <= len(digits_only(phone)) <= 15:
            return []
        return self._result("Primary phone number format may be invalid")


class EmailFormatRule(RowRule):
    def __init__(self) -> None:
        super().__init__(
            code="PERSON_EMAIL_FORMAT",
            description="Primary email should look like local@domain.tld.",
            severity=RuleSeverity.WARNING,
        )

    def evaluate(self, payload: Mapping[str, object | None]) -> Iterable[RuleResult]:
        email = coerce_str(payload.get("email_primary"))
        if not email or _EMAIL_REGEX.match(email):
            return []
        return self._result("Primary email format may be invalid")


def account_rules() -> Sequence[RowRule]:
    """Rules for the ``accounts`` import type, in evaluation order."""
    return (
        OriginalAccountNumberRule(),
        CurrentBalanceRule(),
        SsnFormatRule(),
        DateFormatRule("charge_off_date", "Charge off date"),
        DateFormatRule("date_opened", "Date opened"),
        AccountNumberPresenceRule(),
        PhoneFormatRule(),
        EmailFormatRule(),
    )


RULES_BY_IMPORT_TYPE = {
    "accounts": account_rules,
}


def evaluate_row(
    payload: Mapping[str, object | None], rules: Sequence[RowRule]
) -> tuple[list[str], list[str]]:
    """Run ``rules`` over a payload and split messages into (errors, warnings)."""
    errors: list[str] = []
    warnings: list[str] = []
    for rule in rules:
        for result in rule.evaluate(payload):
            if result.severity == RuleSeverity.ERROR:
                errors.append(result.message)
            else:
                warnings.append(result.message)
    return errors, warnings
