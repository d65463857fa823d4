"""Error types raised by the invoice document core."""

from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from invoicing.validation.rules import FieldValidation


class ErrorKind(str, Enum):
    """Kinds of engine-level failures reported by a rejected operation."""

    DUPLICATE_ID = "DUPLICATE_ID"
    NOT_FOUND = "NOT_FOUND"
    PRICE_CONSISTENCY = "PRICE_CONSISTENCY"
    INVALID_TRANSITION = "INVALID_TRANSITION"


class InvoiceError(Exception):
    """Base class for all invoice document errors."""


class ActionValidationError(InvoiceError):
    """Action payload does not match the shape declared for its type.

    Attributes:
        action_type: Type tag of the rejected action
        errors: Field-level errors reported by the schema validation
    """

    def __init__(self, action_type: str, errors: list[dict[str, Any]]) -> None:
        self.action_type = action_type
        self.errors = errors
        details = "; ".join(
            f"{'.'.join(str(loc) for loc in err.get('loc', ())) or '<input>'}: {err.get('msg')}"
            for err in errors
        )
        super().__init__(f"Invalid {action_type} payload: {details}")


class ReducerError(InvoiceError):
    """Engine-level failure; the action is discarded and state is left unchanged."""

    kind: ClassVar[ErrorKind]


class DuplicateIdError(ReducerError):
    """An add operation used an identifier that is already present."""

    kind = ErrorKind.DUPLICATE_ID


class NotFoundError(ReducerError):
    """An operation referenced a line item that does not exist."""

    kind = ErrorKind.NOT_FOUND


class PriceConsistencyError(ReducerError):
    """Line item totals or unit prices disagree with each other."""

    kind = ErrorKind.PRICE_CONSISTENCY


class InvalidTransitionError(ReducerError):
    """Status change outside the transition table (strict mode only)."""

    kind = ErrorKind.INVALID_TRANSITION


class TransitionValidationError(InvoiceError):
    """Status change blocked by the status validation rules.

    Attributes:
        results: Every failing field validation, so all problems can be reported at once
    """

    def __init__(self, results: "list[FieldValidation]") -> None:
        self.results = results
        summary = ", ".join(f"{r.field} ({r.severity}): {r.message}" for r in results)
        super().__init__(f"Status transition blocked: {summary}")


class UBLParseError(InvoiceError):
    """A UBL document could not be parsed into invoice actions."""


REDUCER_ERRORS: dict[ErrorKind, type[ReducerError]] = {
    cls.kind: cls
    for cls in (DuplicateIdError, NotFoundError, PriceConsistencyError, InvalidTransitionError)
}
