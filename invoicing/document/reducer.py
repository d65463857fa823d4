"""Action dispatcher for invoice documents.

``InvoiceReducer`` routes a validated action to the engine that handles its
type and turns engine failures into a failed ``OperationResult`` while keeping
the previous state. ``InvoiceDocument`` owns the current state and the
append-only operation log, and can rebuild itself from that log.

Usage:
    document = InvoiceDocument()
    document.dispatch(add_line_item(id="L1", ...))
    copy = InvoiceDocument.replay(document.operations)
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from functools import partial
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from invoicing.document.actions import Action, ActionInput, ActionType, parse_input
from invoicing.document.errors import (
    REDUCER_ERRORS,
    ActionValidationError,
    ErrorKind,
    ReducerError,
)
from invoicing.document.schema import InvoiceState, create_initial_state
from invoicing.reducers import general, items, parties
from invoicing.shared.config import Settings, get_settings
from invoicing.shared.metrics import invoice_actions_total

logger = logging.getLogger(__name__)

Handler = Callable[[InvoiceState, ActionInput], InvoiceState]

ACTION_TYPE_LABELS = frozenset(action_type.value for action_type in ActionType)


class OperationResult(BaseModel):
    """Result of applying one action.

    Attributes:
        state: New state on success, the unchanged input state on failure
        success: Whether the action was applied
        error: Error message if the action was rejected
        error_kind: Kind of engine failure if the action was rejected
    """

    state: InvoiceState
    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None

    @classmethod
    def ok(cls, state: InvoiceState) -> "OperationResult":
        return cls(state=state, success=True)

    @classmethod
    def fail(cls, state: InvoiceState, error: ReducerError) -> "OperationResult":
        return cls(state=state, success=False, error=str(error), error_kind=error.kind)


class Operation(BaseModel):
    """Entry of a document's operation log.

    Rejected actions are logged too (with ``error`` set) so the log reflects
    everything the document was asked to do, in order.
    """

    index: int
    type: ActionType
    input: dict[str, Any] = Field(default_factory=dict)
    scope: Literal["global", "local"] = "global"
    timestamp: datetime
    error: str | None = None

    def to_action(self) -> Action:
        return Action(type=self.type, input=self.input, scope=self.scope)


def coerce_action(action: Action | Mapping[str, Any]) -> Action:
    """Accept an ``Action`` or a plain ``{type, input, scope}`` mapping.

    Raises:
        ActionValidationError: If the envelope itself is malformed (e.g. unknown type)
    """
    if isinstance(action, Action):
        return action
    try:
        return Action.model_validate(action)
    except ValidationError as e:
        action_type = "<unknown>"
        if isinstance(action, Mapping):
            action_type = str(action.get("type", action_type))
        raise ActionValidationError(action_type, e.errors(include_url=False)) from e


class InvoiceReducer:
    """Pure state transition function: (state, action) -> OperationResult.

    The handler table is built per instance from the given settings, so two
    reducers with different settings never share routing or behaviour.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize reducer with settings.

        Args:
            settings: Application settings (price precision, strict transitions)
        """
        self.settings = settings
        precision = settings.price_precision

        self._handlers: dict[ActionType, Handler] = {
            ActionType.EDIT_INVOICE: general.edit_invoice,
            ActionType.EDIT_STATUS: partial(
                general.edit_status, strict=settings.strict_status_transitions
            ),
            ActionType.ADD_REF: general.add_ref,
            ActionType.EDIT_REF: general.edit_ref,
            ActionType.DELETE_REF: general.delete_ref,
            ActionType.SET_PAYMENT_ACCOUNT: general.set_payment_account,
            ActionType.EDIT_ISSUER: partial(parties.edit_basic_info, party="issuer"),
            ActionType.EDIT_ISSUER_BANK: partial(parties.edit_bank, party="issuer"),
            ActionType.EDIT_ISSUER_WALLET: partial(parties.edit_wallet, party="issuer"),
            ActionType.EDIT_PAYER: partial(parties.edit_basic_info, party="payer"),
            ActionType.EDIT_PAYER_BANK: partial(parties.edit_bank, party="payer"),
            ActionType.EDIT_PAYER_WALLET: partial(parties.edit_wallet, party="payer"),
            ActionType.ADD_LINE_ITEM: partial(items.add_line_item, precision=precision),
            ActionType.EDIT_LINE_ITEM: partial(items.edit_line_item, precision=precision),
            ActionType.DELETE_LINE_ITEM: items.delete_line_item,
            ActionType.SET_LINE_ITEM_TAG: items.set_line_item_tag,
        }

    def apply(self, state: InvoiceState, action: Action | Mapping[str, Any]) -> OperationResult:
        """Apply one action to a state.

        Args:
            state: Current state (never modified)
            action: Action or ``{type, input, scope}`` mapping

        Returns:
            OperationResult with the new state, or the unchanged state and the
            engine error if the action was rejected

        Raises:
            ActionValidationError: If the payload does not match its schema
        """
        action = coerce_action(action)
        payload = parse_input(action)
        handler = self._handlers[action.type]
        try:
            return OperationResult.ok(handler(state, payload))
        except ReducerError as e:
            return OperationResult.fail(state, e)


class InvoiceDocument:
    """An invoice document: current state plus its operation log."""

    def __init__(
        self,
        settings: Settings | None = None,
        state: InvoiceState | None = None,
        reducer: InvoiceReducer | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.reducer = reducer or InvoiceReducer(self.settings)
        self.state = state if state is not None else create_initial_state()
        self.operations: list[Operation] = []

    def dispatch(self, action: Action | Mapping[str, Any]) -> InvoiceState:
        """Apply an action, record it in the operation log and return the new state.

        A rejected action leaves the state unchanged; the rejection is logged
        and recorded on the operation. With ``raise_on_rejected_action`` the
        engine error is raised after being recorded.

        Raises:
            ActionValidationError: If the action is malformed (not recorded)
            ReducerError: If the action was rejected and raising is enabled
        """
        return self._dispatch(action, raise_rejected=self.settings.raise_on_rejected_action)

    def _dispatch(self, action: Action | Mapping[str, Any], raise_rejected: bool) -> InvoiceState:
        try:
            action = coerce_action(action)
            result = self.reducer.apply(self.state, action)
        except ActionValidationError as e:
            label = e.action_type if e.action_type in ACTION_TYPE_LABELS else "unknown"
            invoice_actions_total.labels(action_type=label, outcome="invalid").inc()
            logger.warning(f"Invalid action rejected before dispatch: {e}")
            raise

        operation = Operation(
            index=len(self.operations),
            type=action.type,
            input=dict(action.input),
            scope=action.scope,
            timestamp=datetime.now(timezone.utc),
            error=result.error,
        )
        self.operations.append(operation)
        self.state = result.state

        if result.success:
            invoice_actions_total.labels(action_type=action.type.value, outcome="applied").inc()
            return self.state

        invoice_actions_total.labels(action_type=action.type.value, outcome="rejected").inc()
        logger.warning(
            f"Rejected {action.type.value} (operation {operation.index}, "
            f"{result.error_kind.value}): {result.error}"
        )
        if raise_rejected:
            raise REDUCER_ERRORS[result.error_kind](result.error)
        return self.state

    def dispatch_all(self, actions: Iterable[Action | Mapping[str, Any]]) -> InvoiceState:
        for action in actions:
            self.dispatch(action)
        return self.state

    @classmethod
    def replay(
        cls,
        operations: Iterable[Operation | Mapping[str, Any]],
        settings: Settings | None = None,
    ) -> "InvoiceDocument":
        """Rebuild a document by re-applying an operation log from the initial state.

        Operations that were rejected originally are rejected again and never
        raise here, so the rebuilt log matches the original one entry for entry.

        Args:
            operations: Operation log (models or their serialized form)
            settings: Settings for the rebuilt document

        Returns:
            New document with identical state
        """
        document = cls(settings=settings)
        for operation in operations:
            if not isinstance(operation, Operation):
                operation = Operation.model_validate(operation)
            document._dispatch(operation.to_action(), raise_rejected=False)
        logger.info(f"Replayed {len(document.operations)} operations")
        return document
