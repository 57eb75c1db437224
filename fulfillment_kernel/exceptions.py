"""
Typed Exception Hierarchy for the Fulfillment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (controllers, job runners, API layers) translate kernel failures into
user-facing messages and HTTP-like status codes. Matching on message text is
fragile, so every failure is:

  1. A TYPED exception class (catch by type, not message)
  2. Tagged with a machine-readable CODE
  3. Tagged with a CATEGORY and a RETRYABLE flag so middleware can decide
     what to do without knowing every concrete class
  4. Carrying structured DATA as attributes

Example:
    try:
        ledger.reserve(product_id, warehouse_id, 95, actor_id=actor)
    except InsufficientStockError as e:
        return {"error": e.code, "available": e.available, "requested": e.requested}
    except ContentionError:
        # Safe to re-run the whole unit of work
        ...

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FulfillmentKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidDocumentNumberError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- InvalidReleaseError
    |   +-- LedgerIntegrityError
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |   |   +-- TransitionGuardError
    |   +-- UnauthorizedActorError
    |
    +-- ApprovalError
    |   +-- AlreadyResolvedError
    |   +-- DuplicateApprovalRequestError
    |
    +-- NotFoundError
    |   +-- WarehouseNotFoundError
    |   +-- ProductNotFoundError
    |   +-- DocumentNotFoundError
    |   +-- ApprovalNotFoundError
    |
    +-- ConcurrencyError
    |   +-- ContentionError
    |
    +-- ConfigurationError
    |   +-- UnknownDocumentTypeError
    |   +-- AmbiguousApprovalRuleError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError
        +-- DocumentDeletionError

===============================================================================
CATEGORIES
===============================================================================

Category        | Retry | Meaning
----------------|-------|----------------------------------------------------
validation      | no    | Malformed input; the caller's fault
business_rule   | no    | Well-formed request that the stock/approval rules refuse
state           | no    | State machine misuse (wrong status, already decided)
not_found       | no    | Referenced row does not exist
contention      | YES   | Lock wait timeout, deadlock, serialization failure
configuration   | no    | Missing or contradictory rule data (5xx-equivalent)
integrity       | no    | Persisted data violates a kernel invariant

No operation partially commits: when any of these is raised inside a unit of
work, the unit of work rolls back every write it made.

===============================================================================
"""


class FulfillmentKernelError(Exception):
    """
    Base exception for all fulfillment kernel errors.

    All subclasses carry a ``code`` class attribute, a ``category`` and a
    ``retryable`` flag.
    """

    code: str = "FULFILLMENT_KERNEL_ERROR"
    category: str = "internal"
    retryable: bool = False


# Validation


class ValidationError(FulfillmentKernelError):
    """Malformed input supplied by the caller."""

    code: str = "VALIDATION_ERROR"
    category: str = "validation"

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"Invalid {field}: {message}")


class InvalidDocumentNumberError(ValidationError):
    """A string does not match the canonical document number format."""

    code: str = "INVALID_DOCUMENT_NUMBER"

    def __init__(self, document_number: str):
        self.document_number = document_number
        super().__init__(
            "document_number",
            f"'{document_number}' is not a valid document number",
        )


# Stock


class StockError(FulfillmentKernelError):
    """Base exception for stock ledger errors."""

    code: str = "STOCK_ERROR"
    category: str = "business_rule"


class InsufficientStockError(StockError):
    """The operation needs more stock than the record can give."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        warehouse_id: str,
        requested: int,
        available: int,
        operation: str,
    ):
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.requested = requested
        self.available = available
        self.operation = operation
        super().__init__(
            f"Insufficient stock for {operation} of product {product_id} "
            f"in warehouse {warehouse_id}: requested {requested}, "
            f"available {available}"
        )


class InvalidReleaseError(StockError):
    """Attempted to release more than is reserved."""

    code: str = "INVALID_RELEASE"

    def __init__(
        self,
        product_id: str,
        warehouse_id: str,
        requested: int,
        reserved: int,
    ):
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.requested = requested
        self.reserved = reserved
        super().__init__(
            f"Cannot release {requested} of product {product_id} in "
            f"warehouse {warehouse_id}: only {reserved} reserved"
        )


class LedgerIntegrityError(StockError):
    """Folding the movement trail does not reproduce the stock record."""

    code: str = "LEDGER_INTEGRITY_ERROR"
    category: str = "integrity"

    def __init__(
        self,
        product_id: str,
        warehouse_id: str,
        expected: dict,
        actual: dict,
    ):
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Stock record for product {product_id} in warehouse "
            f"{warehouse_id} does not match its movements: "
            f"record={actual}, folded={expected}"
        )


# Workflow


class WorkflowError(FulfillmentKernelError):
    """Base exception for document state machine errors."""

    code: str = "WORKFLOW_ERROR"
    category: str = "state"


class InvalidTransitionError(WorkflowError):
    """The requested action is not legal from the document's current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        workflow: str,
        document_id: str,
        current_state: str,
        action: str,
        reason: str | None = None,
    ):
        self.workflow = workflow
        self.document_id = document_id
        self.current_state = current_state
        self.action = action
        self.reason = reason
        message = (
            f"Cannot '{action}' {workflow} {document_id} "
            f"in status {current_state}"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TransitionGuardError(InvalidTransitionError):
    """The transition exists but its guard condition is not satisfied."""

    code: str = "TRANSITION_GUARD_FAILED"

    def __init__(
        self,
        workflow: str,
        document_id: str,
        current_state: str,
        action: str,
        guard: str,
    ):
        self.guard = guard
        super().__init__(
            workflow, document_id, current_state, action,
            reason=f"guard '{guard}' not satisfied",
        )


class UnauthorizedActorError(WorkflowError):
    """The acting user lacks the role or capability the step requires."""

    code: str = "UNAUTHORIZED_ACTOR"
    category: str = "business_rule"

    def __init__(self, actor_id: str, required: str, context: str):
        self.actor_id = actor_id
        self.required = required
        self.context = context
        super().__init__(
            f"Actor {actor_id} lacks '{required}' for {context}"
        )


# Approval


class ApprovalError(FulfillmentKernelError):
    """Base exception for approval chain errors."""

    code: str = "APPROVAL_ERROR"
    category: str = "state"


class AlreadyResolvedError(ApprovalError):
    """The approval workflow (or level) has already been decided."""

    code: str = "ALREADY_RESOLVED"

    def __init__(self, approval_id: str, workflow_status: str):
        self.approval_id = approval_id
        self.workflow_status = workflow_status
        super().__init__(
            f"Approval {approval_id} is already resolved "
            f"(workflow status {workflow_status})"
        )


class DuplicateApprovalRequestError(ApprovalError):
    """The document already has an approval workflow in progress."""

    code: str = "DUPLICATE_APPROVAL_REQUEST"

    def __init__(self, document_type: str, document_id: str, pending_id: str):
        self.document_type = document_type
        self.document_id = document_id
        self.pending_id = pending_id
        super().__init__(
            f"{document_type} {document_id} already has pending approval "
            f"{pending_id}"
        )


# Not found


class NotFoundError(FulfillmentKernelError):
    """Base exception for missing rows."""

    code: str = "NOT_FOUND"
    category: str = "not_found"


class WarehouseNotFoundError(NotFoundError):
    code: str = "WAREHOUSE_NOT_FOUND"

    def __init__(self, warehouse_id: str):
        self.warehouse_id = warehouse_id
        super().__init__(f"Warehouse not found: {warehouse_id}")


class ProductNotFoundError(NotFoundError):
    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class DocumentNotFoundError(NotFoundError):
    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_type: str, document_id: str):
        self.document_type = document_type
        self.document_id = document_id
        super().__init__(f"{document_type} not found: {document_id}")


class ApprovalNotFoundError(NotFoundError):
    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, approval_id: str):
        self.approval_id = approval_id
        super().__init__(f"Approval not found: {approval_id}")


# Concurrency


class ConcurrencyError(FulfillmentKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"
    category: str = "contention"
    retryable: bool = True


class ContentionError(ConcurrencyError):
    """
    Lock wait timeout, deadlock or serialization failure in the store.

    The unit of work has been rolled back; re-running it from the start
    is safe.
    """

    code: str = "CONTENTION"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Contention during {operation}: {detail}")


# Configuration


class ConfigurationError(FulfillmentKernelError):
    """Rule or reference data is missing or contradictory."""

    code: str = "CONFIGURATION_ERROR"
    category: str = "configuration"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UnknownDocumentTypeError(ConfigurationError):
    """No prefix is configured for the document type."""

    code: str = "UNKNOWN_DOCUMENT_TYPE"

    def __init__(self, document_type: str):
        self.document_type = document_type
        super().__init__(f"No document prefix configured for '{document_type}'")


class AmbiguousApprovalRuleError(ConfigurationError):
    """Two equally specific approval rules match the same amount."""

    code: str = "AMBIGUOUS_APPROVAL_RULE"

    def __init__(self, document_type: str, amount: str, rule_names: list[str]):
        self.document_type = document_type
        self.amount = amount
        self.rule_names = rule_names
        super().__init__(
            f"Ambiguous approval rules for {document_type} amount {amount}: "
            f"{', '.join(rule_names)}"
        )


# Immutability


class ImmutabilityError(FulfillmentKernelError):
    """Base exception for immutability errors."""

    code: str = "IMMUTABILITY_ERROR"
    category: str = "integrity"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class DocumentDeletionError(ImmutabilityError):
    """A document that has left its initial state (or moved stock) was deleted."""

    code: str = "DOCUMENT_DELETION_FORBIDDEN"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot delete {entity_type} {entity_id}: {reason}")
