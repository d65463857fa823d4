"""Party engine.

Applies partial edits to the issuer or payer: basic info (identity, name,
address, contact, country), bank routing including the nested intermediary
bank, and wallet routing. These edits never run price or status checks; they
only guarantee that fields the caller did not touch keep their values.
"""

from typing import Any, Literal

from invoicing.document.actions import EditBankInput, EditLegalEntityInput, EditWalletInput
from invoicing.document.schema import (
    Address,
    Bank,
    ContactInfo,
    CorporateRegistrationId,
    IntermediaryBank,
    InvoiceState,
    LegalEntity,
    PaymentRouting,
    TaxId,
    Wallet,
)
from invoicing.reducers.merge import first_not_none, is_supplied, supplied_or_current

PartyName = Literal["issuer", "payer"]

ADDRESS_FIELDS = (
    "street_address",
    "extended_address",
    "city",
    "postal_code",
    "country",
    "state_province",
)
CONTACT_FIELDS = ("tel", "email")
BANK_OPTIONAL_FIELDS = ("aba", "bic", "swift", "account_type", "beneficiary", "memo")
WALLET_FIELDS = ("rpc", "chain_name", "chain_id", "address")

INTERMEDIARY_SUFFIX = "_intermediary"


def _ensure_payment_routing(entity: LegalEntity) -> PaymentRouting:
    if entity.payment_routing is None:
        entity.payment_routing = PaymentRouting(bank=None, wallet=None)
    return entity.payment_routing


def edit_basic_info(
    state: InvoiceState, payload: EditLegalEntityInput, party: PartyName
) -> InvoiceState:
    """Merge name, identity, address, contact and country into a party.

    A supplied ``id`` always becomes a tax id (an empty value clears the
    identity); a non-empty ``corp_reg_id`` sets a corporate registration id.
    """
    next_state = state.model_copy(deep=True)
    entity: LegalEntity = getattr(next_state, party)

    if any(is_supplied(payload, field) for field in ADDRESS_FIELDS):
        current_address = entity.address
        entity.address = Address(
            **{
                field: supplied_or_current(payload, field, getattr(current_address, field, None))
                for field in ADDRESS_FIELDS
            }
        )

    if any(is_supplied(payload, field) for field in CONTACT_FIELDS):
        current_contact = entity.contact_info
        entity.contact_info = ContactInfo(
            **{
                field: supplied_or_current(payload, field, getattr(current_contact, field, None))
                for field in CONTACT_FIELDS
            }
        )

    if is_supplied(payload, "country"):
        entity.country = payload.country
    if is_supplied(payload, "id"):
        entity.id = TaxId(tax_id=payload.id) if payload.id else None
    if is_supplied(payload, "corp_reg_id"):
        if payload.corp_reg_id:
            entity.id = CorporateRegistrationId(corp_reg_id=payload.corp_reg_id)
        elif isinstance(entity.id, CorporateRegistrationId):
            entity.id = None
    if is_supplied(payload, "name"):
        entity.name = payload.name

    return next_state


def _merge_bank_fields(
    payload: EditBankInput, current: IntermediaryBank | None, suffix: str = ""
) -> dict[str, Any]:
    """Resolve one bank level's fields against its own current values.

    ``suffix`` selects the payload fields of the level (empty for the bank,
    ``_intermediary`` for the intermediary bank); fields of one level never
    fall back to values of the other.
    """
    current_address = current.address if current is not None else None
    address = Address(
        **{
            field: supplied_or_current(
                payload, f"{field}{suffix}", getattr(current_address, field, None)
            )
            for field in ADDRESS_FIELDS
        }
    )

    merged: dict[str, Any] = {
        field: supplied_or_current(payload, f"{field}{suffix}", getattr(current, field, None))
        for field in BANK_OPTIONAL_FIELDS
    }
    merged["address"] = address
    merged["name"] = first_not_none(
        getattr(payload, f"name{suffix}"), getattr(current, "name", None), default=""
    )
    merged["account_num"] = first_not_none(
        getattr(payload, f"account_num{suffix}"),
        getattr(current, "account_num", None),
        default="",
    )
    return merged


def edit_bank(state: InvoiceState, payload: EditBankInput, party: PartyName) -> InvoiceState:
    """Merge bank and intermediary bank fields into a party's payment routing."""
    next_state = state.model_copy(deep=True)
    routing = _ensure_payment_routing(getattr(next_state, party))

    current = routing.bank
    current_intermediary = current.intermediary_bank if current is not None else None

    routing.bank = Bank(
        **_merge_bank_fields(payload, current),
        intermediary_bank=IntermediaryBank(
            **_merge_bank_fields(payload, current_intermediary, INTERMEDIARY_SUFFIX)
        ),
    )
    return next_state


def edit_wallet(state: InvoiceState, payload: EditWalletInput, party: PartyName) -> InvoiceState:
    """Merge wallet fields into a party's payment routing (null keeps the current value)."""
    next_state = state.model_copy(deep=True)
    routing = _ensure_payment_routing(getattr(next_state, party))

    current = routing.wallet
    routing.wallet = Wallet(
        **{
            field: first_not_none(getattr(payload, field), getattr(current, field, None))
            for field in WALLET_FIELDS
        }
    )
    return next_state
