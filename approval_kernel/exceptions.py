"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The API layer in front of the engine must turn every failure into a precise
user-facing message ("upload required before approval", "stage is not in
progress") without parsing strings.  Therefore:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        orchestrator.approve(principal, stage_id)
    except Exception as e:
        if "upload" in str(e):  # FRAGILE - message might change
            ask_for_upload()

Example - RIGHT way (what this module enables):
    try:
        orchestrator.approve(principal, stage_id)
    except MissingUploadError as e:
        ask_for_upload(stage_id=e.stage_id)
    except InvalidStateError as e:
        api_response(code=e.code, status=e.current_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ApprovalKernelError:

    ApprovalKernelError (base)
    |
    +-- NotFoundError
    |   +-- RequestNotFoundError
    |   +-- StageNotFoundError
    |   +-- TemplateNotFoundError
    |   +-- AttachmentNotFoundError
    |
    +-- UnauthorizedError
    |
    +-- InvalidStateError
    |   +-- InvalidRequestStateError
    |   +-- InvalidStageStateError
    |
    +-- PreconditionFailedError
    |   +-- MissingUploadError
    |   +-- MissingCommentError
    |   +-- InactiveTemplateError
    |   +-- NoDefaultRouteError
    |   +-- InvalidStageSpecError
    |
    +-- ConflictError
    |   +-- StageTransitionConflictError
    |   +-- SequenceConflictError
    |
    +-- StorageUnavailableError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Not found       | REQUEST_NOT_FOUND           | Request id does not resolve
                | STAGE_NOT_FOUND             | Stage id does not resolve
                | TEMPLATE_NOT_FOUND          | Template id does not resolve
                | ATTACHMENT_NOT_FOUND        | Attachment id does not resolve
----------------|-----------------------------|-----------------------------------------
Authorization   | UNAUTHORIZED                | Caller lacks role or ownership
----------------|-----------------------------|-----------------------------------------
State           | INVALID_REQUEST_STATE       | Request status forbids the command
                | INVALID_STAGE_STATE         | Stage is not in the required status
----------------|-----------------------------|-----------------------------------------
Precondition    | MISSING_UPLOAD              | Approver attached no file to the stage
                | MISSING_COMMENT             | Rejection without a comment
                | INACTIVE_TEMPLATE           | Template was deactivated
                | NO_DEFAULT_ROUTE            | No template and no built-in route
                | INVALID_STAGE_SPEC          | Stage list is empty, gapped or malformed
----------------|-----------------------------|-----------------------------------------
Conflict        | STAGE_TRANSITION_CONFLICT   | Stage status changed underneath us
                | SEQUENCE_CONFLICT           | Counter increment did not apply
----------------|-----------------------------|-----------------------------------------
Storage         | STORAGE_UNAVAILABLE         | Timeout / connection failure (retryable)
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of ledger or audit rows

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ConflictError is safe to retry once: the failed unit of work rolled back
   completely, so a retry cannot duplicate effects.  The orchestrator does
   this automatically.

2. StorageUnavailableError is retried by the external caller, never inside
   the engine.  ``retryable`` is True on the instance.

3. ImmutabilityViolationError signals a programming error or tampering;
   log it and stop.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"
    retryable: bool = False


# Not found


class NotFoundError(ApprovalKernelError):
    """Base exception for unresolvable entity ids."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class RequestNotFoundError(NotFoundError):
    """Request id does not exist."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        super().__init__("Request", request_id)


class StageNotFoundError(NotFoundError):
    """Stage id does not exist."""

    code: str = "STAGE_NOT_FOUND"

    def __init__(self, stage_id: str):
        super().__init__("Stage", stage_id)


class TemplateNotFoundError(NotFoundError):
    """Workflow template id does not exist."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        super().__init__("Template", template_id)


class AttachmentNotFoundError(NotFoundError):
    """Attachment id does not exist."""

    code: str = "ATTACHMENT_NOT_FOUND"

    def __init__(self, attachment_id: str):
        super().__init__("Attachment", attachment_id)


# Authorization


class UnauthorizedError(ApprovalKernelError):
    """Caller lacks the role or ownership required for the action."""

    code: str = "UNAUTHORIZED"

    def __init__(self, action: str, principal_id: str, reason: str):
        self.action = action
        self.principal_id = principal_id
        self.reason = reason
        super().__init__(f"Not authorized to {action}: {reason}")


# State


class InvalidStateError(ApprovalKernelError):
    """Base exception for transitions the current status forbids."""

    code: str = "INVALID_STATE"


class InvalidRequestStateError(InvalidStateError):
    """Request status does not allow the requested command."""

    code: str = "INVALID_REQUEST_STATE"

    def __init__(self, request_id: str, current_status: str, action: str):
        self.request_id = request_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} request {request_id} in status '{current_status}'"
        )


class InvalidStageStateError(InvalidStateError):
    """Stage is not in the status the command requires."""

    code: str = "INVALID_STAGE_STATE"

    def __init__(
        self,
        stage_id: str,
        current_status: str,
        expected_status: str,
        action: str,
    ):
        self.stage_id = stage_id
        self.current_status = current_status
        self.expected_status = expected_status
        self.action = action
        super().__init__(
            f"Cannot {action} stage {stage_id}: status is '{current_status}', "
            f"expected '{expected_status}'"
        )


# Preconditions


class PreconditionFailedError(ApprovalKernelError):
    """Base exception for unmet business rules."""

    code: str = "PRECONDITION_FAILED"


class MissingUploadError(PreconditionFailedError):
    """Approver must attach a supporting file to the stage first."""

    code: str = "MISSING_UPLOAD"

    def __init__(self, stage_id: str, actor_id: str):
        self.stage_id = stage_id
        self.actor_id = actor_id
        super().__init__(
            f"Upload required before approval: no file attached to stage "
            f"{stage_id} by {actor_id}"
        )


class MissingCommentError(PreconditionFailedError):
    """A comment is mandatory for this action."""

    code: str = "MISSING_COMMENT"

    def __init__(self, stage_id: str, action: str):
        self.stage_id = stage_id
        self.action = action
        super().__init__(f"Comment required to {action} stage {stage_id}")


class InactiveTemplateError(PreconditionFailedError):
    """Requests cannot be created from a deactivated template."""

    code: str = "INACTIVE_TEMPLATE"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template {template_id} is inactive")


class NoDefaultRouteError(PreconditionFailedError):
    """No template given and no built-in route for the request type."""

    code: str = "NO_DEFAULT_ROUTE"

    def __init__(self, request_type: str):
        self.request_type = request_type
        super().__init__(
            f"No built-in route for request type '{request_type}'; "
            "a template is required"
        )


class InvalidStageSpecError(PreconditionFailedError):
    """A stage list is empty, out of order, or references unknown roles."""

    code: str = "INVALID_STAGE_SPEC"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid stage specification: {reason}")


# Conflicts


class ConflictError(ApprovalKernelError):
    """Base exception for concurrent modification detected mid-transition."""

    code: str = "CONFLICT"


class StageTransitionConflictError(ConflictError):
    """Stage status changed between read and compare-and-set update."""

    code: str = "STAGE_TRANSITION_CONFLICT"

    def __init__(self, stage_id: str, expected_status: str, target_status: str):
        self.stage_id = stage_id
        self.expected_status = expected_status
        self.target_status = target_status
        super().__init__(
            f"Stage {stage_id} left '{expected_status}' before it could move "
            f"to '{target_status}'"
        )


class SequenceConflictError(ConflictError):
    """The atomic counter increment returned no row."""

    code: str = "SEQUENCE_CONFLICT"

    def __init__(self, sequence_type: str, date_key: str):
        self.sequence_type = sequence_type
        self.date_key = date_key
        super().__init__(
            f"Sequence counter {sequence_type}/{date_key} was not incremented"
        )


# Storage


class StorageUnavailableError(ApprovalKernelError):
    """Transient infrastructure failure; retried by the external caller."""

    code: str = "STORAGE_UNAVAILABLE"
    retryable: bool = True

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage unavailable during {operation}: {detail}")


# Immutability


class ImmutabilityViolationError(ApprovalKernelError):
    """
    Attempted to modify or delete an append-only record.

    Ledger entries and audit entries are immutable after creation; a
    request's sequence number is write-once.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
