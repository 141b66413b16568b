"""
Typed Exception Hierarchy for the Notes Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the lifecycle engine (HTTP handlers, batch jobs, the CLI) must
tell a rejected input apart from a lost race or a failed render without
parsing message strings.  Every error therefore:
  1. Has its own class (catch by type, not message)
  2. Carries a CODE class attribute (machine-readable, API-safe)
  3. Stores its context as attributes (not just a message string)

    try:
        service.issue_note(note_id, actor)
    except RenderFailure as e:
        # Note is still Approved; safe to retry
        schedule_retry(e.document_number)
    except ConcurrencyConflict:
        # Someone else moved the note; re-read and decide
        ...
    except InvalidTransition as e:
        api_response(code=e.code, status=e.current_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    NotesKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidPercentageError
    |   +-- NegativeLevyError
    |   +-- InvalidCoInsuranceSplit
    |   +-- MissingInsurerError
    |   +-- ForbiddenFieldError
    |   |   +-- DocumentNumberImmutableError
    |   +-- PartyInactiveError
    |   +-- InvalidRecipientError
    |
    +-- NotFoundError
    |   +-- NoteNotFoundError
    |   +-- PartyNotFoundError
    |   +-- ArtifactNotFoundError
    |
    +-- InvalidTransition
    |   +-- UnauthorizedTransitionError
    |   +-- FinancialFieldsFrozenError
    |   +-- ConcurrencyConflict
    |
    +-- RenderFailure
    |
    +-- ImmutabilityViolationError
    |
    +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|-------------------------------------------
Validation   | INVALID_AMOUNT              | Gross premium missing, <= 0 or not numeric
             | PCT_RANGE                   | Percentage outside [0, 100] or > 4 dp
             | INVALID_LEVY                | Negative or non-numeric levy
             | INVALID_COINSURANCE_SPLIT   | Shares do not sum to 100 (+-tolerance)
             | INVALID_INSURER_ID          | CN without insurer or co-insurance
             | FORBIDDEN_FIELDS            | Caller supplied engine-owned fields
             | DOCUMENT_NUMBER_IMMUTABLE   | Caller supplied/overwrote document number
             | PARTY_INACTIVE              | Referenced party is not active
             | INVALID_RECIPIENT           | Dispatch recipient is not an e-mail
-------------|-----------------------------|-------------------------------------------
Not found    | NOTE_NOT_FOUND              | Note id / number does not exist
             | PARTY_NOT_FOUND             | Client/policy/insurer does not exist
             | ARTIFACT_NOT_FOUND          | Stored artifact missing
-------------|-----------------------------|-------------------------------------------
Transition   | INVALID_TRANSITION          | Status does not permit the operation
             | INSUFFICIENT_APPROVAL_LEVEL | Actor role/level not allowed
             | FINANCIAL_FIELDS_FROZEN     | Financial edit after Draft
             | CONCURRENCY_CONFLICT        | Lost a race against another transition
-------------|-----------------------------|-------------------------------------------
Render       | RENDER_FAILURE              | Renderer or store failed
-------------|-----------------------------|-------------------------------------------
Integrity    | IMMUTABILITY_VIOLATION      | ORM guard blocked a forbidden write
             | AUDIT_CHAIN_BROKEN          | Audit hash chain validation failed

===============================================================================
DESIGN DECISIONS
===============================================================================

1. ConcurrencyConflict IS-A InvalidTransition.
   A caller that only handles InvalidTransition still sees the loser of a
   transition race fail instead of silently succeeding.

2. Validation errors are raised before any write.
   The lifecycle service validates and looks up parties before it opens
   the allocation transaction, so a ValidationError never consumes a
   sequence value.

===============================================================================
"""

from decimal import Decimal


class NotesKernelError(Exception):
    """
    Base exception for all notes kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "NOTES_KERNEL_ERROR"


# Validation exceptions


class ValidationError(NotesKernelError):
    """Malformed or out-of-range input; nothing has been persisted."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """A monetary input is missing, non-numeric or out of range."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: object, reason: str = "must be greater than 0"):
        self.field = field
        self.value = str(value)
        super().__init__(f"{field} {reason}: {value!r}")


class InvalidPercentageError(ValidationError):
    """A percentage input is outside [0, 100], not numeric, or finer than 4 places."""

    code: str = "PCT_RANGE"

    def __init__(self, field: str, value: object, reason: str | None = None):
        self.field = field
        self.value = str(value)
        self.reason = reason or "must be between 0 and 100"
        super().__init__(f"{field} {self.reason}, got {value!r}")


class NegativeLevyError(ValidationError):
    """A statutory levy is negative or not numeric."""

    code: str = "INVALID_LEVY"

    def __init__(self, levy: str, value: object):
        self.levy = levy
        self.value = str(value)
        super().__init__(f"Levy '{levy}' cannot be negative: {value!r}")


class InvalidCoInsuranceSplit(ValidationError):
    """Co-insurance shares do not reconcile to 100%."""

    code: str = "INVALID_COINSURANCE_SPLIT"

    def __init__(self, total: Decimal | None, tolerance: Decimal, reason: str | None = None):
        self.total = str(total) if total is not None else None
        self.tolerance = str(tolerance)
        self.reason = reason
        message = reason or (
            f"Co-insurance percentages must sum to 100 (+-{tolerance}), got {total}"
        )
        super().__init__(message)


class MissingInsurerError(ValidationError):
    """A Credit Note names neither an insurer nor a co-insurance list."""

    code: str = "INVALID_INSURER_ID"

    def __init__(self, note_type: str):
        self.note_type = note_type
        super().__init__(
            f"{note_type} requires insurer_id or a co-insurance share list"
        )


class ForbiddenFieldError(ValidationError):
    """Caller supplied fields that only the engine may set."""

    code: str = "FORBIDDEN_FIELDS"

    def __init__(self, fields: list[str]):
        self.fields = sorted(fields)
        super().__init__(f"Cannot set fields: {', '.join(self.fields)}")


class DocumentNumberImmutableError(ForbiddenFieldError):
    """Caller attempted to supply or overwrite a document number."""

    code: str = "DOCUMENT_NUMBER_IMMUTABLE"

    def __init__(self, supplied: object):
        self.supplied = str(supplied)
        super().__init__(["document_number"])


class PartyInactiveError(ValidationError):
    """A referenced client, policy or insurer exists but is not active."""

    code: str = "PARTY_INACTIVE"

    def __init__(self, kind: str, party_id: str):
        self.kind = kind
        self.party_id = party_id
        super().__init__(f"{kind} {party_id} is not active")


class InvalidRecipientError(ValidationError):
    """A dispatch recipient is not a valid e-mail address."""

    code: str = "INVALID_RECIPIENT"

    def __init__(self, recipient: str):
        self.recipient = recipient
        super().__init__(f"Invalid recipient e-mail address: {recipient!r}")


# Not-found exceptions


class NotFoundError(NotesKernelError):
    """A referenced record does not exist."""

    code: str = "NOT_FOUND"


class NoteNotFoundError(NotFoundError):
    """Note with the given id or document number was not found."""

    code: str = "NOTE_NOT_FOUND"

    def __init__(self, note_ref: str):
        self.note_ref = note_ref
        super().__init__(f"Note not found: {note_ref}")


class PartyNotFoundError(NotFoundError):
    """Client, policy or insurer was not found in the registry."""

    code: str = "PARTY_NOT_FOUND"

    def __init__(self, kind: str, party_id: str):
        self.kind = kind
        self.party_id = party_id
        super().__init__(f"{kind} not found: {party_id}")


class ArtifactNotFoundError(NotFoundError):
    """Stored artifact bytes are missing for a reference."""

    code: str = "ARTIFACT_NOT_FOUND"

    def __init__(self, artifact_ref: str | None):
        self.artifact_ref = artifact_ref
        super().__init__(f"Artifact not found: {artifact_ref}")


# Lifecycle transition exceptions


class InvalidTransition(NotesKernelError):
    """Requested lifecycle operation does not match the note's status."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        note_ref: str,
        operation: str,
        current_status: str,
        reason: str | None = None,
    ):
        self.note_ref = note_ref
        self.operation = operation
        self.current_status = current_status
        super().__init__(
            reason
            or f"Cannot {operation} note {note_ref} in status {current_status}"
        )


class UnauthorizedTransitionError(InvalidTransition):
    """Actor lacks the role or approval level for the operation."""

    code: str = "INSUFFICIENT_APPROVAL_LEVEL"

    def __init__(
        self,
        operation: str,
        role: str,
        approval_level: int,
        note_ref: str = "-",
        current_status: str = "-",
    ):
        self.role = role
        self.approval_level = approval_level
        super().__init__(
            note_ref,
            operation,
            current_status,
            reason=(
                f"Role '{role}' at approval level {approval_level} "
                f"may not {operation}"
            ),
        )


class FinancialFieldsFrozenError(InvalidTransition):
    """Financial inputs cannot change once a note has left Draft."""

    code: str = "FINANCIAL_FIELDS_FROZEN"

    def __init__(self, note_ref: str, current_status: str, fields: list[str]):
        self.fields = sorted(fields)
        super().__init__(
            note_ref,
            "update",
            current_status,
            reason=(
                f"Financial fields {', '.join(self.fields)} are frozen on "
                f"note {note_ref} (status {current_status})"
            ),
        )


class ConcurrencyConflict(InvalidTransition):
    """A transition lost a race against a concurrent change to the same note."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(
        self,
        note_ref: str,
        operation: str,
        expected_status: str,
        current_status: str,
    ):
        self.expected_status = expected_status
        super().__init__(
            note_ref,
            operation,
            current_status,
            reason=(
                f"Note {note_ref} changed concurrently during {operation}: "
                f"expected {expected_status}, found {current_status}; "
                "re-read and retry"
            ),
        )


# Artifact exceptions


class RenderFailure(NotesKernelError):
    """Artifact generation failed; the note's status did not change."""

    code: str = "RENDER_FAILURE"

    def __init__(self, document_number: str, reason: str):
        self.document_number = document_number
        self.reason = reason
        super().__init__(f"Failed to render artifact for {document_number}: {reason}")


# Integrity exceptions


class ImmutabilityViolationError(NotesKernelError):
    """Attempted to modify an immutable record or field."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


class AuditChainBrokenError(NotesKernelError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, seq: int, expected_hash: str, actual_hash: str):
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at seq {seq}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
