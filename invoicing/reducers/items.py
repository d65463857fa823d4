"""Line item engine.

Adds, edits and deletes line items. Every candidate item is checked for
price consistency before it is committed, and the invoice totals are always
recomputed as a full re-sum over the current line items.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal

from invoicing.document.actions import (
    AddLineItemInput,
    DeleteLineItemInput,
    EditLineItemInput,
    SetLineItemTagInput,
)
from invoicing.document.errors import DuplicateIdError, NotFoundError, PriceConsistencyError
from invoicing.document.schema import InvoiceState, LineItem, LineItemTag
from invoicing.reducers.merge import is_supplied, supplied_values

logger = logging.getLogger(__name__)


def round_amount(value: Decimal, places: int = 2) -> Decimal:
    """Round a decimal half-up to a fixed number of places."""
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def validate_prices(item: LineItem, precision: int = 2) -> None:
    """Check that a line item's prices and totals agree with each other.

    Checks, each at ``precision`` decimal places:
    1. quantity x unit price equals the supplied total (tax incl. and excl.)
    2. unitPriceTaxExcl equals unitPriceTaxIncl / (1 + taxPercent/100)
    3. the computed tax-exclusive total equals the computed tax-inclusive
       total / (1 + taxPercent/100)

    Args:
        item: Full (or merged) candidate line item
        precision: Decimal places used for the comparisons

    Raises:
        PriceConsistencyError: If any check fails, or the amounts are too large to
            compare at ``precision`` places
    """
    try:
        _check_prices(item, precision)
    except ArithmeticError as e:
        # decimal overflow or quantize beyond the context precision
        raise PriceConsistencyError(
            f"Line item '{item.id}': amounts cannot be compared at {precision} decimal places"
        ) from e


def _check_prices(item: LineItem, precision: int) -> None:
    calc_tax_incl = item.quantity * item.unit_price_tax_incl
    calc_tax_excl = item.quantity * item.unit_price_tax_excl

    if round_amount(calc_tax_incl, precision) != round_amount(item.total_price_tax_incl, precision):
        raise PriceConsistencyError(
            f"Line item '{item.id}': quantity x unitPriceTaxIncl ({calc_tax_incl}) "
            f"does not match totalPriceTaxIncl ({item.total_price_tax_incl})"
        )
    if round_amount(calc_tax_excl, precision) != round_amount(item.total_price_tax_excl, precision):
        raise PriceConsistencyError(
            f"Line item '{item.id}': quantity x unitPriceTaxExcl ({calc_tax_excl}) "
            f"does not match totalPriceTaxExcl ({item.total_price_tax_excl})"
        )

    tax_factor = 1 + item.tax_percent / 100
    if tax_factor == 0:
        raise PriceConsistencyError(f"Line item '{item.id}': taxPercent of -100 is not allowed")

    expected_unit_excl = item.unit_price_tax_incl / tax_factor
    if round_amount(item.unit_price_tax_excl, precision) != round_amount(
        expected_unit_excl, precision
    ):
        raise PriceConsistencyError(
            f"Line item '{item.id}': unitPriceTaxExcl ({item.unit_price_tax_excl}) does not "
            f"match unitPriceTaxIncl at {item.tax_percent}% tax ({expected_unit_excl})"
        )

    expected_total_excl = calc_tax_incl / tax_factor
    if round_amount(calc_tax_excl, precision) != round_amount(expected_total_excl, precision):
        raise PriceConsistencyError(
            f"Line item '{item.id}': tax inclusive/exclusive totals failed comparison "
            f"({calc_tax_excl} vs {expected_total_excl})"
        )


def update_totals(state: InvoiceState) -> None:
    """Recompute the invoice totals from the line items (in place)."""
    state.total_price_tax_excl = sum(
        (item.quantity * item.unit_price_tax_excl for item in state.line_items), Decimal("0")
    )
    state.total_price_tax_incl = sum(
        (item.quantity * item.unit_price_tax_incl for item in state.line_items), Decimal("0")
    )
    logger.debug(
        f"Totals recomputed over {len(state.line_items)} line items: "
        f"excl={state.total_price_tax_excl} incl={state.total_price_tax_incl}"
    )


def _find_index(state: InvoiceState, item_id: str) -> int:
    for index, item in enumerate(state.line_items):
        if item.id == item_id:
            return index
    raise NotFoundError(f"Line item '{item_id}' not found")


def add_line_item(
    state: InvoiceState, payload: AddLineItemInput, precision: int = 2
) -> InvoiceState:
    """Append a new line item and recompute totals.

    Raises:
        DuplicateIdError: If a line item with the same id exists
        PriceConsistencyError: If the item's prices are inconsistent
    """
    if any(item.id == payload.id for item in state.line_items):
        raise DuplicateIdError(f"Line item '{payload.id}' already exists")

    item = LineItem.model_validate(payload.model_dump())
    validate_prices(item, precision)

    next_state = state.model_copy(deep=True)
    next_state.line_items.append(item)
    update_totals(next_state)
    return next_state


def edit_line_item(
    state: InvoiceState, payload: EditLineItemInput, precision: int = 2
) -> InvoiceState:
    """Merge a partial edit into an existing line item and recompute totals.

    Null fields in the payload mean "no change". A supplied ``line_item_tag``
    replaces the whole tag list.

    Raises:
        NotFoundError: If no line item matches the id
        PriceConsistencyError: If the merged item's prices are inconsistent
    """
    index = _find_index(state, payload.id)

    changes = supplied_values(payload, exclude={"id", "line_item_tag"})
    if is_supplied(payload, "line_item_tag"):
        changes["line_item_tag"] = [
            tag.model_copy() for tag in (payload.line_item_tag or [])
        ]

    candidate = state.line_items[index].model_copy(update=changes, deep=True)
    validate_prices(candidate, precision)

    next_state = state.model_copy(deep=True)
    next_state.line_items[index] = candidate
    update_totals(next_state)
    return next_state


def delete_line_item(state: InvoiceState, payload: DeleteLineItemInput) -> InvoiceState:
    """Remove a line item (no error if absent) and recompute totals."""
    next_state = state.model_copy(deep=True)
    next_state.line_items = [item for item in next_state.line_items if item.id != payload.id]
    update_totals(next_state)
    return next_state


def set_line_item_tag(state: InvoiceState, payload: SetLineItemTagInput) -> InvoiceState:
    """Set the tag of one dimension on a line item, replacing any previous value.

    Raises:
        NotFoundError: If no line item matches the id
    """
    index = _find_index(state, payload.id)

    next_state = state.model_copy(deep=True)
    item = next_state.line_items[index]
    item.line_item_tag = [tag for tag in item.line_item_tag if tag.dimension != payload.dimension]
    item.line_item_tag.append(
        LineItemTag(dimension=payload.dimension, value=payload.value, label=payload.label or None)
    )
    return next_state
