class LibraryError(Exception):
    """Base exception for loan manager errors."""


class InvalidIdentifierError(LibraryError):
    """Catalog code is not 13 digits once hyphens are stripped."""


class ItemNotFoundError(LibraryError):
    """Item is not catalogued, or has no active loan to return."""


class MemberNotFoundError(LibraryError):
    """Member is not registered with the loan manager."""


class InvalidLoanPeriodError(LibraryError):
    """Due date (or return date) falls before the loan date."""


class DuplicateItemError(LibraryError):
    """Trying to catalogue an item or identifier that already exists."""


class DuplicateMemberError(LibraryError):
    """Trying to register a member id that already exists."""


class LoanStateError(LibraryError):
    """Loan records and item availability disagree."""


class EventDispatchError(LibraryError):
    """A listener failed after the operation completed; result holds its outcome."""

    def __init__(self, message, result=None, errors=()):
        super().__init__(message)
        self.result = result
        self.errors = list(errors)
