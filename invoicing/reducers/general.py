"""General engine: invoice header, status and reference list edits."""

from collections.abc import Mapping

from invoicing.document.actions import (
    AddRefInput,
    DeleteRefInput,
    EditInvoiceInput,
    EditRefInput,
    EditStatusInput,
    SetPaymentAccountInput,
)
from invoicing.document.errors import DuplicateIdError, InvalidTransitionError
from invoicing.document.schema import InvoiceState, Ref, Status
from invoicing.reducers.merge import first_not_none, is_supplied

# Optional hard transition table, enforced only in strict mode.
# Terminal statuses map to an empty set.
STATUS_TRANSITIONS: Mapping[Status, frozenset[Status]] = {
    Status.DRAFT: frozenset({Status.ISSUED, Status.CANCELLED}),
    Status.ISSUED: frozenset(
        {Status.ACCEPTED, Status.REJECTED, Status.CANCELLED, Status.AWAITINGPAYMENT}
    ),
    Status.ACCEPTED: frozenset(
        {Status.AWAITINGPAYMENT, Status.PAYMENTSCHEDULED, Status.CANCELLED}
    ),
    Status.AWAITINGPAYMENT: frozenset(
        {
            Status.PAYMENTSCHEDULED,
            Status.PAYMENTSENT,
            Status.PAYMENTISSUE,
            Status.PAYMENTRECEIVED,
        }
    ),
    Status.PAYMENTSCHEDULED: frozenset({Status.PAYMENTSENT, Status.PAYMENTISSUE}),
    Status.PAYMENTSENT: frozenset({Status.PAYMENTRECEIVED, Status.PAYMENTISSUE}),
    Status.PAYMENTISSUE: frozenset(
        {Status.PAYMENTSCHEDULED, Status.PAYMENTSENT, Status.CANCELLED}
    ),
    Status.REJECTED: frozenset({Status.DRAFT, Status.CANCELLED}),
    Status.CANCELLED: frozenset(),
    Status.PAYMENTRECEIVED: frozenset(),
}


def is_transition_allowed(current: Status, target: Status) -> bool:
    """Check a status change against the transition table (same status is always allowed)."""
    return current == target or target in STATUS_TRANSITIONS.get(current, frozenset())


def edit_invoice(state: InvoiceState, payload: EditInvoiceInput) -> InvoiceState:
    """Merge header fields into the invoice.

    ``date_delivered`` may be cleared with an explicit null; for the other
    header fields a null keeps the current value. Totals are not touched.
    """
    next_state = state.model_copy(deep=True)
    next_state.invoice_no = first_not_none(payload.invoice_no, state.invoice_no)
    next_state.date_issued = first_not_none(payload.date_issued, state.date_issued)
    next_state.date_due = first_not_none(payload.date_due, state.date_due)
    next_state.currency = first_not_none(payload.currency, state.currency)
    if is_supplied(payload, "date_delivered"):
        next_state.date_delivered = payload.date_delivered
    return next_state


def edit_status(
    state: InvoiceState, payload: EditStatusInput, strict: bool = False
) -> InvoiceState:
    """Set the invoice status.

    Any status is accepted unless ``strict`` is set, in which case the change
    must appear in ``STATUS_TRANSITIONS``.

    Raises:
        InvalidTransitionError: In strict mode, if the change is not in the table
    """
    if strict and not is_transition_allowed(state.status, payload.status):
        raise InvalidTransitionError(
            f"Status change {state.status.value} -> {payload.status.value} is not allowed"
        )
    next_state = state.model_copy(deep=True)
    next_state.status = payload.status
    return next_state


def add_ref(state: InvoiceState, payload: AddRefInput) -> InvoiceState:
    """Append a reference.

    Raises:
        DuplicateIdError: If a reference with the same id exists
    """
    if any(ref.id == payload.id for ref in state.refs):
        raise DuplicateIdError(f"Ref '{payload.id}' already exists")
    next_state = state.model_copy(deep=True)
    next_state.refs.append(Ref(id=payload.id, value=payload.value))
    return next_state


def edit_ref(state: InvoiceState, payload: EditRefInput) -> InvoiceState:
    """Replace the value of a reference (no-op if the id is absent)."""
    next_state = state.model_copy(deep=True)
    for ref in next_state.refs:
        if ref.id == payload.id:
            ref.value = payload.value
    return next_state


def delete_ref(state: InvoiceState, payload: DeleteRefInput) -> InvoiceState:
    """Remove a reference (no-op if the id is absent)."""
    next_state = state.model_copy(deep=True)
    next_state.refs = [ref for ref in next_state.refs if ref.id != payload.id]
    return next_state


def set_payment_account(state: InvoiceState, payload: SetPaymentAccountInput) -> InvoiceState:
    next_state = state.model_copy(deep=True)
    next_state.payment_account = payload.payment_account
    return next_state
