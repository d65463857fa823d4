"""Unit tests for the line item engine.

Tests cover:
- Price consistency validation
- Add/edit/delete with total recomputation
- Duplicate and missing id handling
- Line item tags
"""

from decimal import Decimal
from typing import Any

import pytest

from invoicing.document.actions import (
    AddLineItemInput,
    DeleteLineItemInput,
    EditLineItemInput,
    SetLineItemTagInput,
)
from invoicing.document.errors import DuplicateIdError, NotFoundError, PriceConsistencyError
from invoicing.document.schema import InvoiceState, LineItem, LineItemTag, create_initial_state
from invoicing.reducers.items import (
    add_line_item,
    delete_line_item,
    edit_line_item,
    round_amount,
    set_line_item_tag,
    update_totals,
    validate_prices,
)


def line_item_payload(item_id: str = "L1", **overrides: Any) -> dict[str, Any]:
    payload = {
        "id": item_id,
        "description": "Consulting",
        "quantity": 2,
        "taxPercent": 10,
        "currency": "USD",
        "unitPriceTaxExcl": 100,
        "unitPriceTaxIncl": 110,
        "totalPriceTaxExcl": 200,
        "totalPriceTaxIncl": 220,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def state() -> InvoiceState:
    """Initial state with one consistent line item."""
    initial = create_initial_state()
    return add_line_item(initial, AddLineItemInput.model_validate(line_item_payload()))


def assert_totals_match(state: InvoiceState) -> None:
    excl = sum((i.quantity * i.unit_price_tax_excl for i in state.line_items), Decimal("0"))
    incl = sum((i.quantity * i.unit_price_tax_incl for i in state.line_items), Decimal("0"))
    assert round_amount(state.total_price_tax_excl) == round_amount(excl)
    assert round_amount(state.total_price_tax_incl) == round_amount(incl)


# --- Price validation ---


def test_round_amount_half_up() -> None:
    """Test half-up rounding at two and five places."""
    assert round_amount(Decimal("2.345")) == Decimal("2.35")
    assert round_amount(Decimal("2.344")) == Decimal("2.34")
    assert round_amount(Decimal("1.234565"), 5) == Decimal("1.23457")


def test_validate_prices_accepts_consistent_item() -> None:
    """Test that a consistent item passes validation."""
    validate_prices(LineItem.model_validate(line_item_payload()))


def test_validate_prices_rejects_inconsistent_unit_price() -> None:
    """Test that an incl. unit price not matching excl. x (1 + tax) is rejected."""
    item = LineItem.model_validate(line_item_payload(unitPriceTaxIncl=999))

    with pytest.raises(PriceConsistencyError):
        validate_prices(item)


def test_validate_prices_rejects_wrong_total() -> None:
    """Test that a total not equal to quantity x unit price is rejected."""
    item = LineItem.model_validate(line_item_payload(totalPriceTaxExcl=250))

    with pytest.raises(PriceConsistencyError, match="totalPriceTaxExcl"):
        validate_prices(item)


def test_validate_prices_tolerates_sub_cent_differences() -> None:
    """Test that comparisons happen at two decimal places."""
    item = LineItem.model_validate(
        line_item_payload(
            quantity=3,
            taxPercent=20,
            unitPriceTaxExcl="33.333",
            unitPriceTaxIncl="40",
            totalPriceTaxExcl="99.999",
            totalPriceTaxIncl="120",
        )
    )

    validate_prices(item)


def test_validate_prices_rejects_minus_hundred_percent_tax() -> None:
    """Test that a tax rate of -100% cannot be used as a divisor."""
    item = LineItem.model_validate(
        line_item_payload(
            quantity=1,
            taxPercent=-100,
            unitPriceTaxExcl=0,
            unitPriceTaxIncl=0,
            totalPriceTaxExcl=0,
            totalPriceTaxIncl=0,
        )
    )

    with pytest.raises(PriceConsistencyError, match="-100"):
        validate_prices(item)


# --- Add / edit / delete ---


def test_add_line_item_recomputes_totals(state: InvoiceState) -> None:
    """Test that adding an item updates both invoice totals."""
    assert state.total_price_tax_excl == Decimal("200")
    assert state.total_price_tax_incl == Decimal("220")

    next_state = add_line_item(
        state,
        AddLineItemInput.model_validate(
            line_item_payload(
                "L2",
                quantity=1,
                taxPercent=0,
                unitPriceTaxExcl=50,
                unitPriceTaxIncl=50,
                totalPriceTaxExcl=50,
                totalPriceTaxIncl=50,
            )
        ),
    )

    assert [item.id for item in next_state.line_items] == ["L1", "L2"]
    assert next_state.total_price_tax_excl == Decimal("250")
    assert next_state.total_price_tax_incl == Decimal("270")
    assert_totals_match(next_state)


def test_add_line_item_does_not_mutate_input(state: InvoiceState) -> None:
    """Test that the engine returns a new state and leaves the input alone."""
    before = state.model_copy(deep=True)

    add_line_item(state, AddLineItemInput.model_validate(line_item_payload("L2")))

    assert state == before


def test_add_line_item_duplicate_id(state: InvoiceState) -> None:
    """Test that a duplicate id is rejected."""
    with pytest.raises(DuplicateIdError, match="L1"):
        add_line_item(state, AddLineItemInput.model_validate(line_item_payload("L1")))


def test_add_line_item_inconsistent_prices(state: InvoiceState) -> None:
    """Test that an inconsistent item is rejected."""
    with pytest.raises(PriceConsistencyError):
        add_line_item(
            state,
            AddLineItemInput.model_validate(line_item_payload("L2", unitPriceTaxIncl=999)),
        )


def test_edit_line_item_merges_partial(state: InvoiceState) -> None:
    """Test that an edit only overwrites supplied, non-null fields."""
    payload = EditLineItemInput.model_validate(
        {
            "id": "L1",
            "description": None,
            "quantity": 3,
            "totalPriceTaxExcl": 300,
            "totalPriceTaxIncl": 330,
        }
    )

    next_state = edit_line_item(state, payload)
    item = next_state.line_items[0]

    assert item.description == "Consulting"
    assert item.quantity == Decimal("3")
    assert item.unit_price_tax_excl == Decimal("100")
    assert next_state.total_price_tax_excl == Decimal("300")
    assert next_state.total_price_tax_incl == Decimal("330")


def test_edit_line_item_validates_merged_item(state: InvoiceState) -> None:
    """Test that the merged item is validated, not just the partial."""
    payload = EditLineItemInput(id="L1", quantity=3)

    with pytest.raises(PriceConsistencyError):
        edit_line_item(state, payload)


def test_edit_line_item_not_found(state: InvoiceState) -> None:
    """Test that editing a missing item raises NotFoundError."""
    with pytest.raises(NotFoundError, match="L9"):
        edit_line_item(state, EditLineItemInput(id="L9", description="x"))


def test_edit_line_item_replaces_tags(state: InvoiceState) -> None:
    """Test that a supplied tag list replaces the existing one and null clears it."""
    tagged = edit_line_item(
        state,
        EditLineItemInput(id="L1", lineItemTag=[LineItemTag(dimension="costCenter", value="R&D")]),
    )
    assert tagged.line_items[0].line_item_tag[0].value == "R&D"

    cleared = edit_line_item(tagged, EditLineItemInput(id="L1", lineItemTag=None))
    assert cleared.line_items[0].line_item_tag == []


def test_delete_line_item_resets_totals(state: InvoiceState) -> None:
    """Test that deleting the last item resets totals to zero."""
    next_state = delete_line_item(state, DeleteLineItemInput(id="L1"))

    assert next_state.line_items == []
    assert next_state.total_price_tax_excl == Decimal("0")
    assert next_state.total_price_tax_incl == Decimal("0")


def test_delete_line_item_missing_is_noop(state: InvoiceState) -> None:
    """Test that deleting an absent id leaves items unchanged."""
    next_state = delete_line_item(state, DeleteLineItemInput(id="missing"))

    assert next_state.line_items == state.line_items
    assert_totals_match(next_state)


def test_update_totals_full_resum() -> None:
    """Test that totals are a full re-sum, not an increment of stale values."""
    state = create_initial_state()
    state.line_items.append(LineItem.model_validate(line_item_payload()))
    state.total_price_tax_excl = Decimal("12345")

    update_totals(state)

    assert state.total_price_tax_excl == Decimal("200")
    assert state.total_price_tax_incl == Decimal("220")


def test_totals_invariant_over_sequence() -> None:
    """Test that totals match the line items after every operation in a sequence."""
    state = create_initial_state()
    steps = [
        lambda s: add_line_item(s, AddLineItemInput.model_validate(line_item_payload("A"))),
        lambda s: add_line_item(
            s,
            AddLineItemInput.model_validate(
                line_item_payload(
                    "B",
                    quantity="1.5",
                    taxPercent=20,
                    unitPriceTaxExcl="10.10",
                    unitPriceTaxIncl="12.12",
                    totalPriceTaxExcl="15.15",
                    totalPriceTaxIncl="18.18",
                )
            ),
        ),
        lambda s: edit_line_item(
            s,
            EditLineItemInput(id="A", quantity=5, totalPriceTaxExcl=500, totalPriceTaxIncl=550),
        ),
        lambda s: delete_line_item(s, DeleteLineItemInput(id="A")),
        lambda s: delete_line_item(s, DeleteLineItemInput(id="B")),
    ]

    for step in steps:
        state = step(state)
        assert_totals_match(state)

    assert state.total_price_tax_excl == Decimal("0")


# --- Tags ---


class TestSetLineItemTag:
    """Tests for per-dimension line item tags."""

    def test_sets_tag(self, state: InvoiceState) -> None:
        """Test that a tag is appended to the item."""
        next_state = set_line_item_tag(
            state, SetLineItemTagInput(id="L1", dimension="costCenter", value="OPS")
        )

        tags = next_state.line_items[0].line_item_tag
        assert len(tags) == 1
        assert tags[0].dimension == "costCenter"
        assert tags[0].label is None

    def test_replaces_same_dimension(self, state: InvoiceState) -> None:
        """Test that setting a dimension twice keeps only the latest value."""
        first = set_line_item_tag(
            state, SetLineItemTagInput(id="L1", dimension="costCenter", value="OPS")
        )
        second = set_line_item_tag(
            first,
            SetLineItemTagInput(id="L1", dimension="costCenter", value="R&D", label="Research"),
        )
        other = set_line_item_tag(
            second, SetLineItemTagInput(id="L1", dimension="project", value="P-7")
        )

        tags = other.line_items[0].line_item_tag
        assert [(t.dimension, t.value) for t in tags] == [
            ("costCenter", "R&D"),
            ("project", "P-7"),
        ]
        assert tags[0].label == "Research"

    def test_missing_item(self, state: InvoiceState) -> None:
        """Test that tagging a missing item raises NotFoundError."""
        with pytest.raises(NotFoundError):
            set_line_item_tag(state, SetLineItemTagInput(id="nope", dimension="d", value="v"))

    def test_totals_untouched(self, state: InvoiceState) -> None:
        """Test that tagging does not change totals."""
        next_state = set_line_item_tag(
            state, SetLineItemTagInput(id="L1", dimension="d", value="v")
        )

        assert next_state.total_price_tax_excl == state.total_price_tax_excl
