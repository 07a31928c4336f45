from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from exceptions import InvalidIdentifierError, InvalidLoanPeriodError


MONEY_Q = Decimal("0.01")
IDENTIFIER_LENGTH = 13
DEFAULT_LOAN_DAYS = 14


def money(x: Decimal) -> Decimal:
    return x.quantize(MONEY_Q, rounding=ROUND_HALF_UP)


def loan_policy() -> str:
    return f"Standard loan period is {DEFAULT_LOAN_DAYS} days."


# Identifier
@dataclass(frozen=True)
class Identifier:
    """
    Normalized 13-digit catalog code (ISBN-13 style).

    Surrounding whitespace and hyphens are stripped before validation, so
    "978-0321356680" and "9780321356680" are the same identifier.

    Raises:
        InvalidIdentifierError: If the code is missing, not a string, or
            not exactly 13 digits after normalization.
    """
    code: str

    def __post_init__(self) -> None:
        if self.code is None:
            raise InvalidIdentifierError("Identifier code cannot be None")
        if not isinstance(self.code, str):
            raise InvalidIdentifierError(
                f"Identifier code must be a string (got {type(self.code).__name__})"
            )

        cleaned = self.code.strip().replace("-", "")
        if len(cleaned) != IDENTIFIER_LENGTH:
            raise InvalidIdentifierError(
                f"Identifier must contain {IDENTIFIER_LENGTH} digits after "
                f"removing hyphens (got {len(cleaned)}): {self.code!r}"
            )
        # isdigit() alone accepts superscripts and other unicode digits
        if not (cleaned.isascii() and cleaned.isdigit()):
            raise InvalidIdentifierError(f"Identifier must be numeric: {self.code!r}")

        object.__setattr__(self, "code", cleaned)

    def __str__(self) -> str:
        return f"ISBN: {self.code}"


# Catalog Items
@dataclass(eq=False)
class CatalogItem:
    """
    Lendable entity in the catalog.

    Items compare by identity: two copies described by the same fields are
    still two different items on the shelf.

    Attributes:
        title (str): Display title.
        identifier (Identifier): Catalog code.
        checkedOut (bool): True while an active loan exists for the item.
            Only the loan manager changes it.
    """
    title: str
    identifier: Identifier
    checkedOut: bool = field(default=False, init=False)

    def getTitle(self) -> str:
        return self.title

    def getIdentifier(self) -> Identifier:
        return self.identifier

    def isCheckedOut(self) -> bool:
        return self.checkedOut

    def setCheckedOut(self, checkedOut: bool) -> None:
        """
        Flips the availability flag. Reserved for the loan manager.
        """
        self.checkedOut = bool(checkedOut)

    def details(self) -> str:
        return describe_item(self)


@dataclass(eq=False)
class Book(CatalogItem):
    """
    Attributes:
        author (str): Author name.
        copies (int): Number of copies held. Starts at 1.
    """
    author: str
    copies: int = 1

    def addCopies(self, count: int = 1) -> None:
        # No bound check: negative counts are accepted as-is.
        self.copies += count


@dataclass(eq=False)
class Journal(CatalogItem):
    volume: int
    issue: int


def describe_item(item: CatalogItem) -> str:
    """
    Renders the one-line summary for any catalog variant.
    """
    if isinstance(item, Book):
        return (
            f"Book: '{item.title}' by {item.author}. "
            f"Copies: {item.copies}. {item.identifier}"
        )
    if isinstance(item, Journal):
        return (
            f"Journal: '{item.title}', Vol {item.volume}, "
            f"Issue {item.issue}. {item.identifier}"
        )
    raise TypeError(f"Unsupported catalog item: {type(item).__name__}")


# Members
class MemberType(Enum):
    STUDENT = "STUDENT"
    FACULTY = "FACULTY"
    GUEST = "GUEST"


def short_id() -> str:
    return str(uuid.uuid4())[:8]


@dataclass(eq=False)
class Member:
    """
    Represents a party that can hold loans.

    Attributes:
        name (str): Display name, changeable via rename().
        memberType (MemberType): Decides the overdue fine rate.
        memberId (str): Short unique token; generated when not supplied.
    """
    name: str
    memberType: MemberType
    memberId: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.memberId:
            self.memberId = short_id()

    def rename(self, name: str) -> None:
        self.name = name

    def details(self) -> str:
        return f"Member: {self.name} (ID: {self.memberId}) - Type: {self.memberType.value}"


# Loans
class LoanStatus(Enum):
    ACTIVE = "ACTIVE"
    RETURNED = "RETURNED"
    # Derived for display; never stored on a Loan.
    OVERDUE = "OVERDUE"


@dataclass(frozen=True)
class Loan:
    """
    One checkout of one item by one member.

    A Loan never changes after construction. Returning produces a new value
    through markReturned(), and the loan manager swaps it into its records.
    Loans are meant to be created by LoanManager.loanItem().

    Attributes:
        loanId (str): Unique token from the manager's id factory.
        item (CatalogItem): Item on loan (referenced, not owned).
        member (Member): Borrower (referenced, not owned).
        loanDate (date): Checkout date.
        dueDate (date): Date the item is due back; never before loanDate.
        status (LoanStatus): ACTIVE or RETURNED.

    Raises:
        InvalidLoanPeriodError: If a date is missing or dueDate < loanDate.
    """
    loanId: str
    item: CatalogItem
    member: Member
    loanDate: date
    dueDate: date
    status: LoanStatus = LoanStatus.ACTIVE

    def __post_init__(self) -> None:
        for value in (self.loanDate, self.dueDate):
            if isinstance(value, datetime) or not isinstance(value, date):
                raise InvalidLoanPeriodError("loanDate and dueDate must be datetime.date values")
        if self.loanDate > self.dueDate:
            raise InvalidLoanPeriodError(
                f"Due date cannot be before loan date (loan={self.loanDate}, due={self.dueDate})"
            )
        if self.status is LoanStatus.OVERDUE:
            raise ValueError("OVERDUE is derived from dates and cannot be stored")

    def markReturned(self) -> Loan:
        return replace(self, status=LoanStatus.RETURNED)

    def isActive(self) -> bool:
        return self.status is LoanStatus.ACTIVE

    def daysOverdue(self, on_date: date) -> int:
        """
        Whole days past the due date as of on_date; 0 when not late.
        """
        return max(0, (on_date - self.dueDate).days)

    def isOverdue(self, on_date: date) -> bool:
        return self.isActive() and on_date > self.dueDate

    def statusOn(self, on_date: date) -> LoanStatus:
        if self.isOverdue(on_date):
            return LoanStatus.OVERDUE
        return self.status

    def __str__(self) -> str:
        return (
            f"Loan {self.loanId} | {self.item.title} -> {self.member.name} | "
            f"{self.loanDate} to {self.dueDate} | {self.status.value}"
        )

