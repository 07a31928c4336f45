from __future__ import annotations

import argparse
import itertools
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from exceptions import (
    LibraryError,
    ItemNotFoundError,
    MemberNotFoundError,
    InvalidLoanPeriodError,
    DuplicateItemError,
    DuplicateMemberError,
    LoanStateError,
    EventDispatchError,
)
from models import (
    Book,
    CatalogItem,
    Identifier,
    Journal,
    Loan,
    LoanStatus,
    Member,
    MemberType,
    loan_policy,
    money,
)


# Logging configuration
logger = logging.getLogger("library")
logger.setLevel(logging.INFO)

if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


# Events
class EventKind(Enum):
    LOAN_OPENED = "LOAN_OPENED"
    LOAN_REJECTED = "LOAN_REJECTED"
    LOAN_CLOSED = "LOAN_CLOSED"
    FINE_ASSESSED = "FINE_ASSESSED"


@dataclass(frozen=True)
class LoanEvent:
    """
    Something that happened to an item's loan state.

    Attributes:
        kind (EventKind): What happened.
        item (CatalogItem): Item involved.
        member (Member): Borrower (for rejections, the member who asked).
        on (date): Business date of the event.
        loan (Optional[Loan]): Loan record after the change, if any.
        fine (Optional[Decimal]): Set for FINE_ASSESSED only.
    """
    kind: EventKind
    item: CatalogItem
    member: Member
    on: date
    loan: Optional[Loan] = None
    fine: Optional[Decimal] = None


@dataclass(frozen=True)
class ReturnReceipt:
    """
    Outcome of a return. The fine is reported here and nowhere else.
    """
    loan: Loan
    returnDate: date
    daysOverdue: int
    fine: Decimal

    @property
    def isOverdue(self) -> bool:
        return self.daysOverdue > 0


Listener = Callable[[LoanEvent], None]


def render_event(event: LoanEvent) -> str:
    """
    Console wording for an event.
    """
    title = event.item.getTitle()
    if event.kind is EventKind.LOAN_OPENED:
        return f"{title} loaned to {event.member.name}. Due on {event.loan.dueDate}."
    if event.kind is EventKind.LOAN_REJECTED:
        return f"{title} is currently checked out."
    if event.kind is EventKind.LOAN_CLOSED:
        return f"{title} returned by {event.member.name}. Status: {event.loan.status.value}."
    if event.kind is EventKind.FINE_ASSESSED:
        return f"Fine calculated: ${event.fine:.2f}"
    raise ValueError(f"Unknown event kind: {event.kind}")


def counter_ids(prefix: str = "L") -> Callable[[], str]:
    """
    Deterministic id factory: L1, L2, ...
    """
    counter = itertools.count(1)

    def next_id() -> str:
        return f"{prefix}{next(counter)}"

    return next_id


def uuid_ids() -> str:
    return uuid.uuid4().hex


# Loan Manager
class LoanManager:
    """
    Owns the catalog, the member roll and the loan records, and enforces:

        (1) An item can have at most one ACTIVE loan
        (2) Items are due 14 days from the loan date
        (3) Overdue fines per day: Student $0.10, Faculty $0.00, Guest $0.25
        (4) item.isCheckedOut() is True iff the item has an ACTIVE loan

    Every public method runs under one re-entrant lock, so the
    check-then-set in loanItem() cannot interleave with another caller.
    Listeners are called after the lock is released.
    """

    LOAN_PERIOD_DAYS = 14
    FINE_RATES: Dict[MemberType, Decimal] = {
        MemberType.STUDENT: Decimal("0.10"),
        MemberType.FACULTY: Decimal("0.00"),
        MemberType.GUEST: Decimal("0.25"),
    }

    def __init__(
        self,
        loan_period_days: Optional[int] = None,
        fine_rates: Optional[Dict[MemberType, Decimal]] = None,
        today: Optional[Callable[[], date]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        """
        Initializes an empty manager.

        Args:
            loan_period_days: Overrides LOAN_PERIOD_DAYS.
            fine_rates: Overrides entries of FINE_RATES per member type.
            today: Clock returning the current business date.
            id_factory: Produces loan ids.
        """
        if loan_period_days is None:
            loan_period_days = self.LOAN_PERIOD_DAYS
        if loan_period_days < 0:
            raise ValueError("loan_period_days cannot be negative")

        self.loan_period_days = loan_period_days
        self.fine_rates: Dict[MemberType, Decimal] = dict(self.FINE_RATES)
        if fine_rates:
            self.fine_rates.update({k: Decimal(v) for k, v in fine_rates.items()})
        self._today = today or date.today
        self._next_id = id_factory or uuid_ids

        self._items: List[CatalogItem] = []
        self._members: List[Member] = []
        self._loans: List[Loan] = []
        self._events: List[LoanEvent] = []
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()

    # Catalog setup

    def addItem(self, item: CatalogItem) -> None:
        """
        Adds an item to the catalog.

        Raises:
            DuplicateItemError: If the item, or another item with the same
                identifier, is already catalogued.
        """
        logger.info("addItem called | identifier=%s title=%s", item.identifier.code, item.title)

        with self._lock:
            for existing in self._items:
                if existing is item or existing.identifier == item.identifier:
                    raise DuplicateItemError(
                        f"Item already catalogued: identifier={item.identifier.code}"
                    )
            self._items.append(item)

        logger.info("Item added successfully | identifier=%s", item.identifier.code)

    def addMembers(self, *members: Member) -> None:
        """
        Registers one or more members. Nothing is registered if any id clashes.

        Raises:
            DuplicateMemberError: If a memberId is already registered or repeated.
        """
        with self._lock:
            seen = {m.memberId for m in self._members}
            for member in members:
                if member.memberId in seen:
                    raise DuplicateMemberError(
                        f"Member already exists: memberId={member.memberId}"
                    )
                seen.add(member.memberId)
            self._members.extend(members)

        for member in members:
            logger.info("Member registered successfully | memberId=%s", member.memberId)

    # Loan lifecycle

    def loanItem(
        self,
        item: CatalogItem,
        member: Member,
        loan_date: Optional[date] = None,
        due_date: Optional[date] = None,
    ) -> Optional[Loan]:
        """
        Loans an item to a member.

        Returns None, with state unchanged, when the item is already checked
        out. That outcome is reported through a LOAN_REJECTED event rather
        than raised.

        Raises:
            ItemNotFoundError: If the item is not catalogued.
            MemberNotFoundError: If the member is not registered.
            InvalidLoanPeriodError: If due_date is before loan_date.
            EventDispatchError: If a listener raised; .result holds the loan.
        """
        logger.info(
            "loanItem called | identifier=%s memberId=%s",
            item.identifier.code, member.memberId,
        )

        with self._lock:
            self._require_item(item)
            self._require_member(member)

            if loan_date is None:
                loan_date = self._today()
            self._require_date(loan_date, "loan_date")
            if due_date is None:
                due_date = loan_date + timedelta(days=self.loan_period_days)
            self._require_date(due_date, "due_date")
            if due_date < loan_date:
                raise InvalidLoanPeriodError(
                    f"due_date {due_date} cannot be before loan_date {loan_date}"
                )

            if item.isCheckedOut():
                logger.warning(
                    "Loan rejected, item already checked out | identifier=%s memberId=%s",
                    item.identifier.code, member.memberId,
                )
                deliveries = self._record(LoanEvent(EventKind.LOAN_REJECTED, item, member, loan_date))
                loan = None
            else:
                loan = Loan(
                    loanId=self._next_id(),
                    item=item,
                    member=member,
                    loanDate=loan_date,
                    dueDate=due_date,
                    status=LoanStatus.ACTIVE,
                )
                self._loans.append(loan)
                item.setCheckedOut(True)
                deliveries = self._record(
                    LoanEvent(EventKind.LOAN_OPENED, item, member, loan_date, loan=loan)
                )
                logger.info("Loan successful | loanId=%s dueDate=%s", loan.loanId, loan.dueDate)

        self._dispatch(deliveries, loan)
        return loan

    def returnItem(self, item: CatalogItem, return_date: Optional[date] = None) -> ReturnReceipt:
        """
        Closes the active loan for an item.

        The ACTIVE record is replaced, at the same position, by its
        markReturned() value. If the return is late the fine is computed
        and reported on the receipt (and a FINE_ASSESSED event); it is
        not stored anywhere.

        Listeners are called only once the return is complete. If any of
        them fails, EventDispatchError carries the receipt in .result.

        Raises:
            ItemNotFoundError: If no ACTIVE loan references the item.
            LoanStateError: If more than one ACTIVE loan references it.
            InvalidLoanPeriodError: If return_date is before the loan date.
            EventDispatchError: If a listener raised.
        """
        logger.info("returnItem called | identifier=%s", item.identifier.code)

        with self._lock:
            if return_date is None:
                return_date = self._today()
            self._require_date(return_date, "return_date")

            idx = self._find_active_index(item)
            old = self._loans[idx]
            if return_date < old.loanDate:
                raise InvalidLoanPeriodError(
                    f"return_date {return_date} cannot be before loan date {old.loanDate}"
                )

            new = old.markReturned()
            self._loans[idx] = new
            item.setCheckedOut(False)
            pending = [LoanEvent(EventKind.LOAN_CLOSED, item, old.member, return_date, loan=new)]

            days = old.daysOverdue(return_date)
            fine = money(Decimal("0"))
            if days > 0:
                fine = self.calculateFine(days, old.member.memberType)
                logger.info(
                    "Overdue return | loanId=%s daysOverdue=%d fine=%s",
                    old.loanId, days, fine,
                )
                pending.append(
                    LoanEvent(EventKind.FINE_ASSESSED, item, old.member, return_date, loan=new, fine=fine)
                )
            deliveries = self._record(*pending)
            receipt = ReturnReceipt(loan=new, returnDate=return_date, daysOverdue=days, fine=fine)

        logger.info("Return successful | loanId=%s", new.loanId)
        self._dispatch(deliveries, receipt)
        return receipt

    def calculateFine(self, daysOverdue: int, memberType: MemberType) -> Decimal:
        """
        Fine for a number of overdue days at the member type's daily rate.

        Returns:
            Decimal: Rounded to cents; 0.00 for non-positive days and for
            zero-rate member types.
        """
        rate = self.fine_rates[memberType]
        if daysOverdue <= 0 or rate == 0:
            return money(Decimal("0"))
        return money(Decimal(daysOverdue) * rate)

    # Queries

    def searchItems(self, predicate: Callable[[CatalogItem], bool]) -> List[CatalogItem]:
        """
        Returns catalog items matching predicate, in catalog order.
        """
        with self._lock:
            return [item for item in self._items if predicate(item)]

    def matchesSearch(self, query: str) -> bool:
        """
        True if any title contains query (case-sensitive substring).
        """
        with self._lock:
            return any(query in item.title for item in self._items)

    def getItems(self) -> Tuple[CatalogItem, ...]:
        with self._lock:
            return tuple(self._items)

    def getMembers(self) -> Tuple[Member, ...]:
        with self._lock:
            return tuple(self._members)

    def getLoans(self) -> Tuple[Loan, ...]:
        with self._lock:
            return tuple(self._loans)

    def getEvents(self) -> Tuple[LoanEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def activeLoanFor(self, item: CatalogItem) -> Optional[Loan]:
        with self._lock:
            try:
                return self._loans[self._find_active_index(item)]
            except ItemNotFoundError:
                return None

    def overdueLoans(self, on_date: Optional[date] = None) -> List[Loan]:
        """
        ACTIVE loans whose due date has passed as of on_date (default today).
        Nothing is written back; OVERDUE stays a derived status.
        """
        with self._lock:
            if on_date is None:
                on_date = self._today()
            self._require_date(on_date, "on_date")
            return [loan for loan in self._loans if loan.isOverdue(on_date)]

    def checkInvariants(self) -> None:
        """
        Verifies every item's checked-out flag against its ACTIVE loans.

        Raises:
            LoanStateError: On the first item that disagrees.
        """
        with self._lock:
            for item in self._items:
                active = sum(1 for loan in self._loans if loan.item is item and loan.isActive())
                if active > 1 or item.isCheckedOut() != (active == 1):
                    raise LoanStateError(
                        f"identifier={item.identifier.code} checkedOut={item.isCheckedOut()} "
                        f"activeLoans={active}"
                    )

    # Observers

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.remove(listener)

    # Internal Helpers

    def _record(self, *events: LoanEvent) -> List[Tuple[LoanEvent, Listener]]:
        """
        Appends to the history and snapshots the listeners to notify.
        """
        self._events.extend(events)
        return [(event, listener) for event in events for listener in self._listeners]

    def _dispatch(self, deliveries: List[Tuple[LoanEvent, Listener]], result: object) -> None:
        """
        Calls every listener for every event, even after one fails.

        Raises:
            EventDispatchError: Wrapping the first listener error, with the
                operation's result attached.
        """
        errors = []
        for event, listener in deliveries:
            try:
                listener(event)
            except Exception as e:
                logger.exception("Listener failed | event=%s", event.kind.value)
                errors.append(e)

        if errors:
            raise EventDispatchError(
                f"{len(errors)} listener call(s) failed", result=result, errors=errors
            ) from errors[0]

    def _require_item(self, item: CatalogItem) -> None:
        if not any(existing is item for existing in self._items):
            raise ItemNotFoundError(
                f"Item not in catalog: identifier={item.identifier.code}"
            )

    def _require_member(self, member: Member) -> None:
        if not any(existing is member for existing in self._members):
            raise MemberNotFoundError(f"Member not found: memberId={member.memberId}")

    @staticmethod
    def _require_date(d: date, name: str) -> None:
        """
        Validates that the provided value is a plain datetime.date.
        """
        # datetime subclasses date but cannot be compared with one
        if isinstance(d, datetime) or not isinstance(d, date):
            raise ValueError(f"{name} must be a datetime.date")

    def _find_active_index(self, item: CatalogItem) -> int:
        """
        Position of the single ACTIVE loan for item.
        """
        matches = [
            i for i, loan in enumerate(self._loans)
            if loan.item is item and loan.isActive()
        ]
        if not matches:
            raise ItemNotFoundError(
                f"Item not found on active loan records: identifier={item.identifier.code}"
            )
        if len(matches) > 1:
            raise LoanStateError(
                f"{len(matches)} active loans for identifier={item.identifier.code}"
            )
        return matches[0]


# Main Program
def main(argv: Optional[List[str]] = None) -> None:
    """
    Demo driver exercising the loan manager:
        - catalog and member setup
        - a loan, then a rejected second loan of the same item
        - returning an item that is not on loan
        - an overdue return with a student fine
        - identifier search and final loan listing
    """
    parser = argparse.ArgumentParser(description="Library loan manager demo.")
    parser.add_argument("--loan-days", type=int, default=LoanManager.LOAN_PERIOD_DAYS,
                        help="Loan period in days")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Level for the library logger")
    args = parser.parse_args(argv)
    logger.setLevel(args.log_level)

    print("\n=== Library Loan Manager Demo ===\n")

    library = LoanManager(loan_period_days=args.loan_days)
    library.subscribe(lambda event: print("  " + render_event(event)))

    isbn1 = Identifier("978-0321356680")
    isbn2 = Identifier("978-1509897103")
    isbn3 = Identifier("978-0262510875")

    clean_code = Book("Clean Code", isbn1, "Robert C. Martin")
    mockingbird = Book("To Kill a Mockingbird", isbn2, "Harper Lee", copies=5)
    mockingbird.addCopies()
    journal = Journal("Journal of Comp Sci", isbn3, volume=45, issue=1)
    for item in (clean_code, mockingbird, journal):
        library.addItem(item)

    alice = Member("Alice Johnson", MemberType.STUDENT)
    bob = Member("Bob Williams", MemberType.FACULTY)
    library.addMembers(alice, bob)

    print("Catalog:")
    for item in library.getItems():
        print(f"  {item.details()}")
    for member in library.getMembers():
        print(f"  {member.details()}")
    print(f"  {loan_policy()}")

    print("\nLoaning Clean Code to Alice, then to Bob...")
    today = date.today()
    library.loanItem(clean_code, alice, loan_date=today - timedelta(days=20))
    library.loanItem(clean_code, bob)

    print("\nReturning the journal (not on loan)...")
    try:
        library.returnItem(journal)
    except ItemNotFoundError as e:
        print("  Handled:", e)

    print("\nReturning Clean Code late...")
    receipt = library.returnItem(clean_code, return_date=today)
    print(f"  Days overdue: {receipt.daysOverdue}, fine: ${receipt.fine:.2f}")

    print("\nSearching by identifier:")
    for item in library.searchItems(lambda i: i.identifier == isbn1):
        print(f"  {item.details()}")
    print("  Title contains 'Code':", library.matchesSearch("Code"))

    print("\nFinal loan records:")
    for loan in library.getLoans():
        print(f"  {loan}")

    print("\n=== Demo Completed ===\n")


if __name__ == "__main__":
    try:
        main()
    except LibraryError as e:
        logger.error("LibraryError bubbled to top-level | %s", e)
        raise
    except Exception as e:
        logger.exception("Unhandled fatal error | %s", e)
        raise
