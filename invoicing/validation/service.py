"""Status validation service.

Advisory gate run by the caller before a status change is dispatched. The
EDIT_STATUS engine itself trusts its input; ``change_status()`` is the place
where rule failures stop a transition.
"""

import logging
from typing import TYPE_CHECKING, Any

from invoicing.document.actions import edit_status
from invoicing.document.errors import TransitionValidationError
from invoicing.document.schema import InvoiceState, Status
from invoicing.validation.rules import (
    FieldValidation,
    ValidationContext,
    ValidationRule,
    default_rules,
)

if TYPE_CHECKING:
    from invoicing.document.reducer import InvoiceDocument

logger = logging.getLogger(__name__)


def field_values(state: InvoiceState) -> dict[str, Any]:
    """Collect the values the rules check from an invoice state.

    Address, country and bank data come from the issuer, the email from the
    payer. ``bicNumber`` is the BIC, or the SWIFT code when no BIC is set.
    """
    issuer = state.issuer
    address = issuer.address
    routing = issuer.payment_routing
    bank = routing.bank if routing else None
    wallet = routing.wallet if routing else None
    contact = state.payer.contact_info

    return {
        "invoiceNo": state.invoice_no,
        "currency": state.currency,
        "lineItem": state.line_items,
        "country": issuer.country,
        "streetAddress": address.street_address if address else None,
        "city": address.city if address else None,
        "postalCode": address.postal_code if address else None,
        "accountNum": bank.account_num if bank else None,
        "bicNumber": (bank.bic or bank.swift) if bank else None,
        "bankName": bank.name if bank else None,
        "email": contact.email if contact else None,
        "address": wallet.address if wallet else None,
    }


class StatusValidator:
    """Evaluates a rule table against invoice state.

    The rule list is owned by the instance; build one per configuration
    rather than sharing a global table.
    """

    def __init__(self, rules: list[ValidationRule]) -> None:
        self.rules = list(rules)

    def add_rule(self, rule: ValidationRule) -> None:
        self.rules.append(rule)

    def remove_rule(self, field: str) -> None:
        """Remove the first rule registered for ``field`` (no-op if none)."""
        for index, rule in enumerate(self.rules):
            if rule.field == field:
                del self.rules[index]
                return

    def validate_field(
        self, field: str, value: Any, context: ValidationContext
    ) -> FieldValidation | None:
        """Run every applicable rule for one field.

        Returns:
            The first failing result, else the last passing one, or None when
            no rule applies to the field in this context
        """
        result = None
        for rule in self.rules:
            if rule.field != field or not rule.applies_to(context):
                continue
            result = rule.evaluate(value)
            if not result.is_valid:
                return result
        return result

    def validate_status_transition(
        self, state: InvoiceState, target: Status
    ) -> list[FieldValidation]:
        """Evaluate every applicable rule for moving ``state`` to ``target``.

        Returns:
            All failing results in rule order (empty if the transition is clean)
        """
        context = ValidationContext(
            currency=state.currency, current_status=state.status, target_status=target
        )
        values = field_values(state)

        failures = []
        for rule in self.rules:
            if not rule.applies_to(context):
                continue
            result = rule.evaluate(values.get(rule.field))
            if not result.is_valid:
                failures.append(result)
        return failures


def change_status(
    document: "InvoiceDocument",
    target: Status | str,
    validator: StatusValidator | None = None,
) -> InvoiceState:
    """Validate a status change and dispatch it if no rule fails.

    Warnings block the transition just like errors.

    Args:
        document: Document to change
        target: Requested status
        validator: Rule set to use (defaults to the standard rules for the
            document's settings)

    Returns:
        The document's new state

    Raises:
        TransitionValidationError: If any rule fails; carries every failure
    """
    target = Status(target)
    validator = validator or StatusValidator(default_rules(document.settings))

    failures = validator.validate_status_transition(document.state, target)
    if failures:
        logger.info(
            f"Status change {document.state.status.value} -> {target.value} blocked "
            f"by {len(failures)} rule(s)"
        )
        raise TransitionValidationError(failures)
    return document.dispatch(edit_status(target))
