"""Status validation rules.

A rule binds a field name to a check, the currencies it applies to and the
status transitions it guards. ``default_rules()`` builds the standard table
for issuing an invoice.
"""

import re
from collections.abc import Callable, Collection
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from invoicing.document.schema import Status
from invoicing.shared.config import Settings

Severity = Literal["error", "warning", "none"]

ALL_CURRENCIES = "ALL"
FIAT_CURRENCIES = ("USD", "EUR", "GBP", "JPY", "CNY", "CHF")
IBAN_CURRENCIES = ("EUR", "GBP")

IBAN_PATTERN = re.compile(
    r"^([A-Z]{2}[0-9]{2})(?=(?:[A-Z0-9]){9,30}$)((?:[A-Z0-9]{3,5}){2,7})([A-Z0-9]{1,3})?$"
)
BIC_PATTERN = re.compile(r"^[a-zA-Z]{6}[a-zA-Z0-9]{2}([a-zA-Z0-9]{3})?$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
EVM_ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


class ValidationResult(BaseModel):
    """Outcome of a single check."""

    is_valid: bool
    message: str = ""
    severity: Severity = "none"


class FieldValidation(ValidationResult):
    """Outcome of a rule, tagged with the field it checked."""

    field: str


class ValidationContext(BaseModel):
    """Currency and status transition a rule set is evaluated for."""

    currency: str
    current_status: Status
    target_status: Status


Check = Callable[[Any], ValidationResult]


class ValidationRule(BaseModel):
    """One entry of the rule table.

    Attributes:
        field: Name of the field the rule checks (e.g. 'accountNum')
        check: Predicate returning a ValidationResult for a field value
        currencies: Currency codes the rule applies to ('ALL' matches any)
        from_statuses: Statuses the transition may start from
        to_statuses: Statuses the transition may end in
    """

    model_config = ConfigDict(frozen=True)

    field: str
    check: Check
    currencies: frozenset[str]
    from_statuses: frozenset[Status]
    to_statuses: frozenset[Status]

    def applies_to(self, context: ValidationContext) -> bool:
        currency_matches = (
            ALL_CURRENCIES in self.currencies or context.currency in self.currencies
        )
        return (
            currency_matches
            and context.current_status in self.from_statuses
            and context.target_status in self.to_statuses
        )

    def evaluate(self, value: Any) -> FieldValidation:
        result = self.check(value)
        return FieldValidation(field=self.field, **result.model_dump())


def _passed() -> ValidationResult:
    return ValidationResult(is_valid=True)


def _failed(message: str, severity: Severity = "warning") -> ValidationResult:
    return ValidationResult(is_valid=False, message=message, severity=severity)


def _is_blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def required(message: str, severity: Severity = "warning") -> Check:
    """Build a check that fails when the value is missing or blank."""

    def check(value: Any) -> ValidationResult:
        return _failed(message, severity) if _is_blank(value) else _passed()

    return check


def check_iban(value: Any) -> ValidationResult:
    if _is_blank(value):
        return _failed("Account number is required")
    if not IBAN_PATTERN.match(str(value)):
        return _failed("Invalid IBAN format - Remove spaces and/or dashes")
    return _passed()


def check_bic(value: Any) -> ValidationResult:
    if _is_blank(value):
        return _failed("BIC number is required")
    if not BIC_PATTERN.match(str(value)):
        return _failed("Invalid BIC number format")
    return _passed()


def check_email(value: Any) -> ValidationResult:
    if _is_blank(value):
        return _failed("Email is required")
    if not EMAIL_PATTERN.match(str(value)):
        return _failed("Invalid email format")
    return _passed()


def check_wallet_address(value: Any) -> ValidationResult:
    # A missing address blocks payment outright; a malformed one is only flagged.
    if _is_blank(value):
        return _failed("Wallet address is required", "error")
    if not EVM_ADDRESS_PATTERN.match(str(value)):
        return _failed("Invalid Ethereum address format")
    return _passed()


def check_line_items(value: Any) -> ValidationResult:
    if not value:
        return _failed("Line item is required - Add at least one line item")
    return _passed()


def make_rule(
    field: str,
    check: Check,
    currencies: Collection[str],
    from_statuses: Collection[Status] = (Status.DRAFT,),
    to_statuses: Collection[Status] = (Status.ISSUED,),
) -> ValidationRule:
    return ValidationRule(
        field=field,
        check=check,
        currencies=frozenset(currencies),
        from_statuses=frozenset(from_statuses),
        to_statuses=frozenset(to_statuses),
    )


def default_rules(settings: Settings) -> list[ValidationRule]:
    """Build the standard rule table for DRAFT -> ISSUED.

    Args:
        settings: Application settings (crypto currency list)

    Returns:
        New list of rules; callers may extend or trim it freely
    """
    return [
        make_rule("invoiceNo", required("Invoice number is required"), [ALL_CURRENCIES]),
        make_rule("address", check_wallet_address, settings.crypto_currencies),
        make_rule("currency", required("Currency is required"), [ALL_CURRENCIES]),
        make_rule("country", required("Country is required"), FIAT_CURRENCIES),
        make_rule("accountNum", check_iban, IBAN_CURRENCIES),
        make_rule("bicNumber", check_bic, IBAN_CURRENCIES),
        make_rule("bankName", required("Bank name is required"), FIAT_CURRENCIES),
        make_rule("streetAddress", required("Street address is required"), FIAT_CURRENCIES),
        make_rule("city", required("City is required"), FIAT_CURRENCIES),
        make_rule("postalCode", required("Postal code is required"), FIAT_CURRENCIES),
        make_rule("email", check_email, FIAT_CURRENCIES),
        make_rule("lineItem", check_line_items, FIAT_CURRENCIES),
    ]
