"""Invoice document state models.

The state is the authoritative shape of an invoice document: header data,
the two legal entities (issuer and payer) with their payment routing, the
line items and the derived invoice totals.

Attribute names are snake_case; the serialized (wire) names are the camelCase
names used by actions and persisted operation logs.
"""

from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class InvoiceModel(BaseModel):
    """Base model for all invoice state objects (camelCase aliases)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Status(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    CANCELLED = "CANCELLED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    AWAITINGPAYMENT = "AWAITINGPAYMENT"
    PAYMENTSCHEDULED = "PAYMENTSCHEDULED"
    PAYMENTSENT = "PAYMENTSENT"
    PAYMENTISSUE = "PAYMENTISSUE"
    PAYMENTRECEIVED = "PAYMENTRECEIVED"


class AccountType(str, Enum):
    """Bank account type."""

    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    TRUST = "TRUST"
    WALLET = "WALLET"


class Address(InvoiceModel):
    """Postal address."""

    street_address: str | None = None
    extended_address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = None
    state_province: str | None = None


class ContactInfo(InvoiceModel):
    """Contact details of a legal entity."""

    tel: str | None = None
    email: str | None = None


class IntermediaryBank(InvoiceModel):
    """Correspondent bank used to route a payment to the beneficiary bank.

    Attributes:
        name: Bank name
        address: Bank postal address
        aba: ABA routing number
        bic: Bank Identifier Code
        swift: SWIFT code (tracked independently of the BIC)
        account_num: Account number or IBAN
        account_type: Account type
        beneficiary: Account holder
        memo: Free-text payment memo
    """

    name: str = ""
    address: Address = Field(default_factory=Address)
    aba: str | None = Field(default=None, alias="ABA")
    bic: str | None = Field(default=None, alias="BIC")
    swift: str | None = Field(default=None, alias="SWIFT")
    account_num: str = ""
    account_type: AccountType | None = None
    beneficiary: str | None = None
    memo: str | None = None


class Bank(IntermediaryBank):
    """Beneficiary bank, optionally reached through an intermediary bank."""

    intermediary_bank: IntermediaryBank | None = None


class Wallet(InvoiceModel):
    """On-chain payment destination."""

    rpc: str | None = None
    chain_name: str | None = None
    chain_id: str | None = None
    address: str | None = None


class PaymentRouting(InvoiceModel):
    """Bank and/or wallet payment destination of a legal entity."""

    bank: Bank | None = None
    wallet: Wallet | None = None


class TaxId(InvoiceModel):
    """Legal identity given by a tax identifier."""

    kind: Literal["TAX_ID"] = "TAX_ID"
    tax_id: str


class CorporateRegistrationId(InvoiceModel):
    """Legal identity given by a corporate registration number."""

    kind: Literal["CORP_REG_ID"] = "CORP_REG_ID"
    corp_reg_id: str


LegalEntityId = Annotated[TaxId | CorporateRegistrationId, Field(discriminator="kind")]


def identity_value(identity: TaxId | CorporateRegistrationId | None) -> str | None:
    """Return the identifier string carried by a legal identity.

    Args:
        identity: Tax id, corporate registration id or None

    Returns:
        The identifier, or None when there is no identity
    """
    if identity is None:
        return None
    if isinstance(identity, TaxId):
        return identity.tax_id
    if isinstance(identity, CorporateRegistrationId):
        return identity.corp_reg_id
    raise TypeError(f"Unsupported legal identity: {type(identity).__name__}")


class LegalEntity(InvoiceModel):
    """Issuer or payer of an invoice."""

    id: LegalEntityId | None = None
    name: str | None = None
    address: Address | None = None
    contact_info: ContactInfo | None = None
    country: str | None = None
    payment_routing: PaymentRouting | None = None


class LineItemTag(InvoiceModel):
    """Classification of a line item along one dimension (e.g. cost center)."""

    dimension: str
    value: str
    label: str | None = None


class LineItem(InvoiceModel):
    """A single billable entry of the invoice."""

    id: str
    description: str
    quantity: Decimal
    tax_percent: Decimal
    currency: str
    unit_price_tax_excl: Decimal
    unit_price_tax_incl: Decimal
    total_price_tax_excl: Decimal
    total_price_tax_incl: Decimal
    line_item_tag: list[LineItemTag] = Field(default_factory=list)


class Ref(InvoiceModel):
    """Free-form external reference (e.g. purchase order number)."""

    id: str
    value: str


class InvoiceState(InvoiceModel):
    """Global state of an invoice document.

    The totals are derived from the line items and are only ever written by
    the line item engine.
    """

    invoice_no: str = ""
    date_issued: str = ""
    date_due: str = ""
    date_delivered: str | None = ""
    status: Status = Status.DRAFT
    refs: list[Ref] = Field(default_factory=list)
    issuer: LegalEntity = Field(default_factory=LegalEntity)
    payer: LegalEntity = Field(default_factory=LegalEntity)
    currency: str = ""
    line_items: list[LineItem] = Field(default_factory=list)
    total_price_tax_excl: Decimal = Decimal("0")
    total_price_tax_incl: Decimal = Decimal("0")
    payment_account: str | None = ""


def _empty_address() -> Address:
    return Address(
        street_address="",
        extended_address="",
        city="",
        postal_code="",
        country="",
        state_province="",
    )


def _empty_legal_entity() -> LegalEntity:
    intermediary = IntermediaryBank(
        name="",
        address=_empty_address(),
        aba="",
        bic="",
        swift="",
        account_num="",
        account_type=AccountType.CHECKING,
        beneficiary="",
        memo="",
    )
    bank = Bank(
        **intermediary.model_dump(),
        intermediary_bank=intermediary.model_copy(deep=True),
    )
    return LegalEntity(
        id=None,
        name="",
        address=_empty_address(),
        contact_info=ContactInfo(tel="", email=""),
        country="",
        payment_routing=PaymentRouting(
            bank=bank,
            wallet=Wallet(rpc="", chain_name="", chain_id="", address=""),
        ),
    )


def create_initial_state() -> InvoiceState:
    """Create the fixed initial state of a new invoice document.

    Returns:
        Draft invoice with empty header, empty parties and no line items
    """
    return InvoiceState(issuer=_empty_legal_entity(), payer=_empty_legal_entity())
