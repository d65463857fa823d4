"""Unit tests for status validation rules and the change_status gate.

Tests cover:
- Individual checks (IBAN, BIC, email, wallet address)
- Rule selection by currency and transition
- Field value extraction from state
- change_status blocking and dispatching
"""

import pytest

from invoicing.document.actions import (
    add_line_item,
    edit_invoice,
    edit_issuer,
    edit_issuer_bank,
    edit_issuer_wallet,
    edit_payer,
)
from invoicing.document.errors import TransitionValidationError
from invoicing.document.reducer import InvoiceDocument
from invoicing.document.schema import Status
from invoicing.shared.config import Settings
from invoicing.validation.rules import (
    ValidationContext,
    check_bic,
    check_email,
    check_iban,
    check_wallet_address,
    default_rules,
    make_rule,
    required,
)
from invoicing.validation.service import StatusValidator, change_status, field_values


@pytest.fixture
def settings() -> Settings:
    """Create settings for validation tests."""
    return Settings(_env_file=None)


@pytest.fixture
def validator(settings: Settings) -> StatusValidator:
    """Validator with the default rule table."""
    return StatusValidator(default_rules(settings))


@pytest.fixture
def eur_document(settings: Settings) -> InvoiceDocument:
    """EUR invoice that passes every DRAFT -> ISSUED rule."""
    document = InvoiceDocument(settings=settings)
    document.dispatch_all(
        [
            edit_invoice(invoiceNo="INV-7", currency="EUR"),
            edit_issuer(
                name="Acme GmbH",
                streetAddress="Hauptstr. 1",
                city="Berlin",
                postalCode="10115",
                country="DE",
            ),
            edit_issuer_bank(
                {"name": "Deutsche Bank", "accountNum": "DE89370400440532013000", "BIC": "DEUTDEFF"}
            ),
            edit_payer(name="Buyer Ltd", email="ap@buyer.example"),
            add_line_item(
                id="L1",
                description="Consulting",
                quantity=1,
                taxPercent=19,
                currency="EUR",
                unitPriceTaxExcl=100,
                unitPriceTaxIncl=119,
                totalPriceTaxExcl=100,
                totalPriceTaxIncl=119,
            ),
        ]
    )
    return document


def draft_to_issued(currency: str) -> ValidationContext:
    return ValidationContext(
        currency=currency, current_status=Status.DRAFT, target_status=Status.ISSUED
    )


# --- Checks ---


def test_check_iban() -> None:
    """Test IBAN shape validation."""
    assert check_iban("DE89370400440532013000").is_valid
    assert check_iban("GB29NWBK60161331926819").is_valid

    missing = check_iban("")
    assert missing.message == "Account number is required"
    assert missing.severity == "warning"

    spaced = check_iban("DE89 3704 0044 0532 0130 00")
    assert not spaced.is_valid
    assert spaced.message == "Invalid IBAN format - Remove spaces and/or dashes"


def test_check_bic() -> None:
    """Test BIC shape validation (8 or 11 characters)."""
    assert check_bic("DEUTDEFF").is_valid
    assert check_bic("deutdeff500").is_valid
    assert check_bic("DEUT").message == "Invalid BIC number format"
    assert check_bic(None).message == "BIC number is required"


def test_check_email() -> None:
    """Test email shape validation."""
    assert check_email("ap@buyer.example").is_valid
    assert check_email("not-an-email").message == "Invalid email format"
    assert check_email("  ").message == "Email is required"


def test_check_wallet_address_severities() -> None:
    """Test that a missing address is an error and a malformed one a warning."""
    assert check_wallet_address("0x" + "aB" * 20).is_valid

    missing = check_wallet_address("")
    assert missing.severity == "error"
    assert missing.message == "Wallet address is required"

    malformed = check_wallet_address("0x123")
    assert malformed.severity == "warning"
    assert malformed.message == "Invalid Ethereum address format"


def test_passing_result_has_no_severity() -> None:
    """Test that a passing check reports severity 'none'."""
    result = required("Invoice number is required")("INV-1")

    assert result.is_valid
    assert result.severity == "none"
    assert result.message == ""


# --- Rule selection ---


class TestValidateField:
    """Tests for single-field validation."""

    def test_rule_applies_for_matching_currency(self, validator: StatusValidator) -> None:
        """Test that the IBAN rule runs for EUR."""
        result = validator.validate_field("accountNum", "", draft_to_issued("EUR"))

        assert result is not None
        assert result.field == "accountNum"
        assert result.severity == "warning"

    def test_no_rule_for_other_currency(self, validator: StatusValidator) -> None:
        """Test that the IBAN rule does not run for USD."""
        assert validator.validate_field("accountNum", "", draft_to_issued("USD")) is None

    def test_no_rule_for_other_transition(self, validator: StatusValidator) -> None:
        """Test that rules are keyed by the transition pair."""
        context = ValidationContext(
            currency="EUR", current_status=Status.ISSUED, target_status=Status.ACCEPTED
        )

        assert validator.validate_field("accountNum", "", context) is None

    def test_all_currency_rule(self, validator: StatusValidator) -> None:
        """Test that 'ALL' rules run for any currency, even an unknown one."""
        result = validator.validate_field("invoiceNo", "", draft_to_issued("XYZ"))

        assert result is not None
        assert result.message == "Invoice number is required"

    def test_first_failure_wins(self, validator: StatusValidator) -> None:
        """Test that the first failing rule for a field is returned."""
        validator.add_rule(make_rule("invoiceNo", required("second rule"), ["ALL"]))

        result = validator.validate_field("invoiceNo", "", draft_to_issued("EUR"))

        assert result.message == "Invoice number is required"

    def test_last_pass_returned(self, validator: StatusValidator) -> None:
        """Test that the last passing result is returned when all rules pass."""
        result = validator.validate_field("invoiceNo", "INV-1", draft_to_issued("EUR"))

        assert result is not None
        assert result.is_valid

    def test_remove_rule(self, validator: StatusValidator) -> None:
        """Test that a removed rule no longer applies."""
        validator.remove_rule("invoiceNo")

        assert validator.validate_field("invoiceNo", "", draft_to_issued("EUR")) is None

    def test_crypto_currencies_from_settings(self) -> None:
        """Test that the wallet rule follows the configured crypto currencies."""
        validator = StatusValidator(
            default_rules(Settings(_env_file=None, crypto_currencies=["USDC"]))
        )

        assert validator.validate_field("address", "", draft_to_issued("USDC")) is not None
        assert validator.validate_field("address", "", draft_to_issued("DAI")) is None


# --- Transition validation ---


def test_field_values_reads_issuer_and_payer(eur_document: InvoiceDocument) -> None:
    """Test that rule inputs come from the right parts of state."""
    values = field_values(eur_document.state)

    assert values["invoiceNo"] == "INV-7"
    assert values["accountNum"] == "DE89370400440532013000"
    assert values["bicNumber"] == "DEUTDEFF"
    assert values["city"] == "Berlin"
    assert values["email"] == "ap@buyer.example"
    assert len(values["lineItem"]) == 1


def test_bic_number_falls_back_to_swift(eur_document: InvoiceDocument) -> None:
    """Test that the SWIFT code is used when no BIC is set."""
    eur_document.dispatch(edit_issuer_bank({"BIC": None, "SWIFT": "DEUTDEFFXXX"}))

    assert field_values(eur_document.state)["bicNumber"] == "DEUTDEFFXXX"


def test_clean_transition_has_no_failures(
    eur_document: InvoiceDocument, validator: StatusValidator
) -> None:
    """Test that a complete EUR invoice can be issued."""
    assert validator.validate_status_transition(eur_document.state, Status.ISSUED) == []


def test_eur_missing_account_number_warns(
    eur_document: InvoiceDocument, validator: StatusValidator
) -> None:
    """Test that an EUR bank without account number fails with a warning."""
    state = eur_document.state.model_copy(deep=True)
    state.issuer.payment_routing.bank.account_num = ""

    failures = validator.validate_status_transition(state, Status.ISSUED)

    assert [(f.field, f.severity) for f in failures] == [("accountNum", "warning")]


def test_initial_invoice_reports_every_failure(
    settings: Settings, validator: StatusValidator
) -> None:
    """Test that all failing fields are reported at once."""
    document = InvoiceDocument(settings=settings)
    document.dispatch(edit_invoice(currency="USD"))

    failures = validator.validate_status_transition(document.state, Status.ISSUED)
    fields = {f.field for f in failures}

    assert fields == {
        "invoiceNo",
        "country",
        "bankName",
        "streetAddress",
        "city",
        "postalCode",
        "email",
        "lineItem",
    }


def test_crypto_invoice_requires_wallet(settings: Settings, validator: StatusValidator) -> None:
    """Test that a USDS invoice needs a well-formed wallet address."""
    document = InvoiceDocument(settings=settings)
    document.dispatch_all([edit_invoice(invoiceNo="INV-9", currency="USDS")])

    failures = validator.validate_status_transition(document.state, Status.ISSUED)
    assert [(f.field, f.severity) for f in failures] == [("address", "error")]

    document.dispatch(edit_issuer_wallet(address="0x" + "1" * 40))
    assert validator.validate_status_transition(document.state, Status.ISSUED) == []


# --- change_status ---


class TestChangeStatus:
    """Tests for the pre-flight status gate."""

    def test_dispatches_when_valid(
        self, eur_document: InvoiceDocument, validator: StatusValidator
    ) -> None:
        """Test that a valid transition is dispatched and logged."""
        state = change_status(eur_document, Status.ISSUED, validator)

        assert state.status == Status.ISSUED
        assert eur_document.operations[-1].type.value == "EDIT_STATUS"

    def test_blocks_with_all_failures(self, settings: Settings) -> None:
        """Test that failures raise before any action is dispatched."""
        document = InvoiceDocument(settings=settings)
        document.dispatch(edit_invoice(currency="EUR"))
        operations_before = len(document.operations)

        with pytest.raises(TransitionValidationError) as exc_info:
            change_status(document, "ISSUED")

        fields = [r.field for r in exc_info.value.results]
        assert "accountNum" in fields
        assert "invoiceNo" in fields
        assert document.state.status == Status.DRAFT
        assert len(document.operations) == operations_before

    def test_warnings_block(self, eur_document: InvoiceDocument) -> None:
        """Test that a warning-only failure still blocks the transition."""
        eur_document.dispatch(edit_payer(email="broken"))

        with pytest.raises(TransitionValidationError, match="Invalid email format"):
            change_status(eur_document, Status.ISSUED)

    def test_unguarded_transition_passes(self, eur_document: InvoiceDocument) -> None:
        """Test that transitions without rules are dispatched directly."""
        state = change_status(eur_document, Status.CANCELLED)

        assert state.status == Status.CANCELLED
