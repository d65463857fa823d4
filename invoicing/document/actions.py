"""Invoice actions: type tags, payload schemas and action creators.

Every action is a tagged request to mutate invoice state. Payloads are
validated against the input model registered for the action type before
they reach any engine; unknown fields are rejected.
"""

from collections.abc import Mapping
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from invoicing.document.errors import ActionValidationError
from invoicing.document.schema import AccountType, LineItemTag, Status


class ActionType(str, Enum):
    """Action type tags."""

    # General
    EDIT_INVOICE = "EDIT_INVOICE"
    EDIT_STATUS = "EDIT_STATUS"
    ADD_REF = "ADD_REF"
    EDIT_REF = "EDIT_REF"
    DELETE_REF = "DELETE_REF"
    SET_PAYMENT_ACCOUNT = "SET_PAYMENT_ACCOUNT"

    # Parties
    EDIT_ISSUER = "EDIT_ISSUER"
    EDIT_ISSUER_BANK = "EDIT_ISSUER_BANK"
    EDIT_ISSUER_WALLET = "EDIT_ISSUER_WALLET"
    EDIT_PAYER = "EDIT_PAYER"
    EDIT_PAYER_BANK = "EDIT_PAYER_BANK"
    EDIT_PAYER_WALLET = "EDIT_PAYER_WALLET"

    # Items
    ADD_LINE_ITEM = "ADD_LINE_ITEM"
    EDIT_LINE_ITEM = "EDIT_LINE_ITEM"
    DELETE_LINE_ITEM = "DELETE_LINE_ITEM"
    SET_LINE_ITEM_TAG = "SET_LINE_ITEM_TAG"


class ActionInput(BaseModel):
    """Base model for action payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class EditInvoiceInput(ActionInput):
    invoice_no: str | None = None
    date_issued: str | None = None
    date_due: str | None = None
    date_delivered: str | None = None
    currency: str | None = None


class EditStatusInput(ActionInput):
    status: Status


class AddRefInput(ActionInput):
    id: str
    value: str


class EditRefInput(ActionInput):
    id: str
    value: str


class DeleteRefInput(ActionInput):
    id: str


class SetPaymentAccountInput(ActionInput):
    payment_account: str


class EditLegalEntityInput(ActionInput):
    """Basic info edit for the issuer or the payer.

    ``id`` is a tax identifier; ``corp_reg_id`` sets a corporate registration
    identity instead.
    """

    id: str | None = None
    corp_reg_id: str | None = None
    name: str | None = None
    street_address: str | None = None
    extended_address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = None
    state_province: str | None = None
    tel: str | None = None
    email: str | None = None


class EditBankInput(ActionInput):
    """Bank edit for the issuer or the payer.

    Fields suffixed with ``_intermediary`` address the nested intermediary bank.
    """

    name: str | None = None
    street_address: str | None = None
    extended_address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = None
    state_province: str | None = None
    aba: str | None = Field(default=None, alias="ABA")
    bic: str | None = Field(default=None, alias="BIC")
    swift: str | None = Field(default=None, alias="SWIFT")
    account_num: str | None = None
    account_type: AccountType | None = None
    beneficiary: str | None = None
    memo: str | None = None

    name_intermediary: str | None = None
    street_address_intermediary: str | None = None
    extended_address_intermediary: str | None = None
    city_intermediary: str | None = None
    postal_code_intermediary: str | None = None
    country_intermediary: str | None = None
    state_province_intermediary: str | None = None
    aba_intermediary: str | None = Field(default=None, alias="ABAIntermediary")
    bic_intermediary: str | None = Field(default=None, alias="BICIntermediary")
    swift_intermediary: str | None = Field(default=None, alias="SWIFTIntermediary")
    account_num_intermediary: str | None = None
    account_type_intermediary: AccountType | None = None
    beneficiary_intermediary: str | None = None
    memo_intermediary: str | None = None


class EditWalletInput(ActionInput):
    rpc: str | None = None
    chain_name: str | None = None
    chain_id: str | None = None
    address: str | None = None


class AddLineItemInput(ActionInput):
    id: str
    description: str
    tax_percent: Decimal
    quantity: Decimal
    currency: str
    unit_price_tax_excl: Decimal
    unit_price_tax_incl: Decimal
    total_price_tax_excl: Decimal
    total_price_tax_incl: Decimal
    line_item_tag: list[LineItemTag] = Field(default_factory=list)


class EditLineItemInput(ActionInput):
    id: str
    description: str | None = None
    tax_percent: Decimal | None = None
    quantity: Decimal | None = None
    currency: str | None = None
    unit_price_tax_excl: Decimal | None = None
    unit_price_tax_incl: Decimal | None = None
    total_price_tax_excl: Decimal | None = None
    total_price_tax_incl: Decimal | None = None
    line_item_tag: list[LineItemTag] | None = None


class DeleteLineItemInput(ActionInput):
    id: str


class SetLineItemTagInput(ActionInput):
    id: str
    dimension: str
    value: str
    label: str | None = None


ACTION_INPUTS: Mapping[ActionType, type[ActionInput]] = MappingProxyType(
    {
        ActionType.EDIT_INVOICE: EditInvoiceInput,
        ActionType.EDIT_STATUS: EditStatusInput,
        ActionType.ADD_REF: AddRefInput,
        ActionType.EDIT_REF: EditRefInput,
        ActionType.DELETE_REF: DeleteRefInput,
        ActionType.SET_PAYMENT_ACCOUNT: SetPaymentAccountInput,
        ActionType.EDIT_ISSUER: EditLegalEntityInput,
        ActionType.EDIT_ISSUER_BANK: EditBankInput,
        ActionType.EDIT_ISSUER_WALLET: EditWalletInput,
        ActionType.EDIT_PAYER: EditLegalEntityInput,
        ActionType.EDIT_PAYER_BANK: EditBankInput,
        ActionType.EDIT_PAYER_WALLET: EditWalletInput,
        ActionType.ADD_LINE_ITEM: AddLineItemInput,
        ActionType.EDIT_LINE_ITEM: EditLineItemInput,
        ActionType.DELETE_LINE_ITEM: DeleteLineItemInput,
        ActionType.SET_LINE_ITEM_TAG: SetLineItemTagInput,
    }
)


class Action(BaseModel):
    """A tagged request to mutate invoice state.

    Attributes:
        type: Action type tag
        input: Payload, keyed by the camelCase wire names
        scope: State partition the action applies to
    """

    type: ActionType
    input: dict[str, Any] = Field(default_factory=dict)
    scope: Literal["global", "local"] = "global"


def parse_input(action: Action) -> ActionInput:
    """Validate an action payload against the schema of its type.

    Args:
        action: Action to validate

    Returns:
        Validated input model

    Raises:
        ActionValidationError: If the payload does not match the schema
    """
    model = ACTION_INPUTS[action.type]
    try:
        return model.model_validate(action.input)
    except ValidationError as e:
        raise ActionValidationError(action.type.value, e.errors(include_url=False)) from e


def create_action(
    action_type: ActionType | str, payload: Mapping[str, Any] | None = None, **fields: Any
) -> Action:
    """Build a validated action.

    The payload may use snake_case or camelCase keys; the stored input uses
    the camelCase wire names and only contains the fields that were supplied.

    Args:
        action_type: Action type tag
        payload: Payload mapping
        **fields: Additional payload fields

    Returns:
        Action ready to be dispatched

    Raises:
        ActionValidationError: If the type is unknown or the payload does not match the schema
    """
    try:
        action_type = ActionType(action_type)
    except ValueError as e:
        raise ActionValidationError(
            str(action_type),
            [{"loc": ("type",), "msg": f"Unknown action type '{action_type}'"}],
        ) from e
    raw = Action(type=action_type, input={**(payload or {}), **fields})
    validated = parse_input(raw)
    return Action(
        type=action_type,
        input=validated.model_dump(by_alias=True, exclude_unset=True),
    )


def edit_invoice(payload: Mapping[str, Any] | None = None, **fields: Any) -> Action:
    return create_action(ActionType.EDIT_INVOICE, payload, **fields)


def edit_status(status: Status | str) -> Action:
    return create_action(ActionType.EDIT_STATUS, status=status)


def add_ref(id: str, value: str) -> Action:
    return create_action(ActionType.ADD_REF, id=id, value=value)


def edit_ref(id: str, value: str) -> Action:
    return create_action(ActionType.EDIT_REF, id=id, value=value)


def delete_ref(id: str) -> Action:
    return create_action(ActionType.DELETE_REF, id=id)


def set_payment_account(payment_account: str) -> Action:
    return create_action(ActionType.SET_PAYMENT_ACCOUNT, payment_account=payment_account)


def edit_issuer(payload: Mapping[str, Any] | None = None, **fields: Any) -> Action:
    return create_action(ActionType.EDIT_ISSUER, payload, **fields)


def edit_issuer_bank(payload: Mapping[str, Any] | None = None, **fields: Any) -> Action:
    return create_action(ActionType.EDIT_ISSUER_BANK, payload, **fields)


def edit_issuer_wallet(payload: Mapping[str, Any] | None = None, **fields: Any) -> Action:
    return create_action(ActionType.EDIT_ISSUER_WALLET, payload, **fields)


def edit_payer(payload: Mapping[str, Any] | None = None, **fields: Any) -> Action:
    return create_action(ActionType.EDIT_PAYER, payload, **fields)


def edit_payer_bank(payload: Mapping[str, Any] | None = None, **fields: Any) -> Action:
    return create_action(ActionType.EDIT_PAYER_BANK, payload, **fields)


def edit_payer_wallet(payload: Mapping[str, Any] | None = None, **fields: Any) -> Action:
    return create_action(ActionType.EDIT_PAYER_WALLET, payload, **fields)


def add_line_item(payload: Mapping[str, Any] | None = None, **fields: Any) -> Action:
    return create_action(ActionType.ADD_LINE_ITEM, payload, **fields)


def edit_line_item(payload: Mapping[str, Any] | None = None, **fields: Any) -> Action:
    return create_action(ActionType.EDIT_LINE_ITEM, payload, **fields)


def delete_line_item(id: str) -> Action:
    return create_action(ActionType.DELETE_LINE_ITEM, id=id)


def set_line_item_tag(
    id: str, dimension: str, value: str, label: str | None = None
) -> Action:
    return create_action(
        ActionType.SET_LINE_ITEM_TAG, id=id, dimension=dimension, value=value, label=label
    )
