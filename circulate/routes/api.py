#!/usr/bin/env python

"""
    API routes for Circulate,
    covering users, the catalog, loans, reservations, fines and the
    loan/renewal request queues.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from functools import wraps
from typing import Generator, List, Optional
from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Response,
    status,
)
from circulate.core import db
from circulate.core.api import CirculationAPI
from circulate.core.fines import PersistedFine
from circulate.core.models import LoanStatus, RequestStatus, ReservationStatus
from circulate.core.exceptions import (
    BookExistsError,
    ConflictError,
    DatabaseInsertError,
    InvalidRequestError,
    NotFoundError,
    PolicyDenied,
    UserExistsError,
)
from circulate.schemas.book import Book
from circulate.schemas.eligibility import Eligibility
from circulate.schemas.fine import Fine, Outstanding
from circulate.schemas.loan import Loan, LoanReturn, Renewal
from circulate.schemas.notification import Notification
from circulate.schemas.report import ActiveUser, DashboardStats, PopularBook
from circulate.schemas.request import LoanRequest, RenewalRequest
from circulate.schemas.reservation import Reservation
from circulate.schemas.user import User
from circulate.routes.schemas import (
    BookUpdate,
    CopiesRequest,
    LoanRequestBody,
    NewBook,
    NewUser,
    RenewalRequestBody,
    ReservationRequest,
    ReviewNotes,
    UserUpdate,
)

router = APIRouter()


def get_api() -> Generator[CirculationAPI, None, None]:
    api = CirculationAPI(session=db.session())
    try:
        yield api
    finally:
        db.session.remove()


def translates_errors(func):
    """Maps circulation errors raised by the wrapped route onto HTTP errors."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PolicyDenied as e:
            raise HTTPException(status_code=400, detail=e.to_dict())
        except InvalidRequestError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except (BookExistsError, UserExistsError) as e:
            raise HTTPException(status_code=409, detail=str(e))
        except ConflictError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except DatabaseInsertError as e:
            raise HTTPException(status_code=500, detail=str(e))
    return wrapper


# Users

@router.post("/users", response_model=User, status_code=status.HTTP_201_CREATED)
@translates_errors
def create_user(body: NewUser, api: CirculationAPI = Depends(get_api)):
    return api.add_user(body.name, body.email, role=body.role, phone=body.phone)

@router.get("/users/{user_id}", response_model=User)
@translates_errors
def get_user(user_id: int, api: CirculationAPI = Depends(get_api)):
    return api.get_user(user_id)

@router.patch("/users/{user_id}", response_model=User)
@translates_errors
def update_user(user_id: int, body: UserUpdate, api: CirculationAPI = Depends(get_api)):
    return api.update_user(user_id, **body.model_dump(exclude_unset=True))

@router.post("/users/{user_id}/reactivate", response_model=User)
@translates_errors
def reactivate_user(user_id: int, api: CirculationAPI = Depends(get_api)):
    return api.reactivate_user(user_id)

@router.get("/users/{user_id}/notifications", response_model=List[Notification])
@translates_errors
def get_notifications(user_id: int, api: CirculationAPI = Depends(get_api)):
    return api.notifications(user_id)

@router.get("/users/{user_id}/reservations", response_model=List[Reservation])
@translates_errors
def get_user_reservations(user_id: int, api: CirculationAPI = Depends(get_api)):
    return api.reservations(user_id)

@router.get("/users/{user_id}/fines/outstanding", response_model=Outstanding)
@translates_errors
def get_outstanding(user_id: int, api: CirculationAPI = Depends(get_api)):
    return Outstanding(user_id=user_id, amount=api.outstanding_fines(user_id))


# Catalog

@router.get("/books", response_model=List[Book])
def get_books(offset: Optional[int] = None, limit: Optional[int] = None,
              api: CirculationAPI = Depends(get_api)):
    return api.books(offset=offset, limit=limit)

@router.post("/books", response_model=Book, status_code=status.HTTP_201_CREATED)
@translates_errors
def create_book(body: NewBook, api: CirculationAPI = Depends(get_api)):
    return api.add_book(body.title, body.author, tag=body.tag,
                        total_copies=body.total_copies, isbn=body.isbn)

@router.get("/books/{book_id}", response_model=Book)
@translates_errors
def get_book(book_id: int, api: CirculationAPI = Depends(get_api)):
    return api.get_book(book_id)

@router.patch("/books/{book_id}", response_model=Book)
@translates_errors
def update_book(book_id: int, body: BookUpdate, api: CirculationAPI = Depends(get_api)):
    return api.update_book(book_id, **body.model_dump(exclude_unset=True))

@router.delete("/books/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
@translates_errors
def delete_book(book_id: int, api: CirculationAPI = Depends(get_api)):
    api.delete_book(book_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.put("/books/{book_id}/copies", response_model=Book)
@translates_errors
def set_copies(book_id: int, body: CopiesRequest, api: CirculationAPI = Depends(get_api)):
    return api.set_available_copies(book_id, body.available_copies)

@router.get("/books/{book_id}/waitlist", response_model=List[Reservation])
@translates_errors
def get_waitlist(book_id: int, api: CirculationAPI = Depends(get_api)):
    return api.waitlist(book_id)


# Loans

@router.get("/loans/check-eligibility", response_model=Eligibility)
@translates_errors
def check_eligibility(user_id: int, book_id: int, api: CirculationAPI = Depends(get_api)):
    return api.evaluate_eligibility(user_id, book_id).to_dict()

@router.get("/loans", response_model=List[Loan])
@translates_errors
def get_loans(user_id: Optional[int] = None, status: Optional[LoanStatus] = None,
              offset: Optional[int] = None, limit: Optional[int] = None,
              api: CirculationAPI = Depends(get_api)):
    return api.loans(user_id=user_id, status=status, offset=offset, limit=limit)

@router.post("/loans", response_model=Loan, status_code=status.HTTP_201_CREATED)
@translates_errors
def create_loan(body: LoanRequestBody, api: CirculationAPI = Depends(get_api)):
    return api.create_loan(body.user_id, body.book_id)

@router.get("/loans/{loan_id}", response_model=Loan)
@translates_errors
def get_loan(loan_id: int, api: CirculationAPI = Depends(get_api)):
    return api.get_loan(loan_id)

@router.get("/loans/{loan_id}/fines", response_model=List[Fine])
@translates_errors
def get_loan_fines(loan_id: int, api: CirculationAPI = Depends(get_api)):
    return [Fine.model_validate(view) for view in api.loan_fines(loan_id)]

@router.post("/loans/{loan_id}/return", response_model=LoanReturn)
@translates_errors
def return_loan(loan_id: int, api: CirculationAPI = Depends(get_api)):
    receipt = api.return_loan(loan_id)
    return LoanReturn(
        loan=Loan.model_validate(receipt.loan),
        fine_amount=receipt.fine_amount,
        days_overdue=receipt.days_overdue,
        notified_reservation_id=receipt.notified.id if receipt.notified else None,
    )

@router.post("/loans/{loan_id}/renew", response_model=Renewal)
@translates_errors
def renew_loan(loan_id: int, api: CirculationAPI = Depends(get_api)):
    return Renewal(loan_id=loan_id, new_due_date=api.renew_loan(loan_id))


# Reservations

@router.get("/reservations", response_model=List[Reservation])
@translates_errors
def get_reservations(user_id: Optional[int] = None, book_id: Optional[int] = None,
                     status: Optional[ReservationStatus] = None,
                     api: CirculationAPI = Depends(get_api)):
    return api.all_reservations(user_id=user_id, book_id=book_id, status=status)

@router.post("/reservations", response_model=Reservation, status_code=status.HTTP_201_CREATED)
@translates_errors
def create_reservation(body: ReservationRequest, api: CirculationAPI = Depends(get_api)):
    return api.create_reservation(body.user_id, body.book_id)

@router.delete("/reservations/user/{user_id}/book/{book_id}", response_model=Reservation)
@translates_errors
def cancel_reservation(user_id: int, book_id: int, api: CirculationAPI = Depends(get_api)):
    return api.cancel_reservation(user_id, book_id)


# Fines

@router.get("/fines", response_model=List[Fine])
@translates_errors
def get_fines(user_id: Optional[int] = None, api: CirculationAPI = Depends(get_api)):
    return [Fine.model_validate(view) for view in api.fines(user_id=user_id)]

@router.post("/fines/{fine_id}/pay", response_model=Fine)
@translates_errors
def pay_fine(fine_id: str, api: CirculationAPI = Depends(get_api)):
    """Accepts stored fine ids and `virtual-<loan id>` for a running fine."""
    return Fine.model_validate(PersistedFine(api.pay_fine(fine_id)))


# Loan requests

@router.get("/loan-requests", response_model=List[LoanRequest])
def get_loan_requests(user_id: Optional[int] = None, status: Optional[RequestStatus] = None,
                      api: CirculationAPI = Depends(get_api)):
    return api.loan_requests(user_id=user_id, status=status)

@router.post("/loan-requests", response_model=LoanRequest, status_code=status.HTTP_201_CREATED)
@translates_errors
def create_loan_request(body: LoanRequestBody, api: CirculationAPI = Depends(get_api)):
    return api.create_loan_request(body.user_id, body.book_id)

@router.post("/loan-requests/{request_id}/approve", response_model=Loan)
@translates_errors
def approve_loan_request(request_id: int, api: CirculationAPI = Depends(get_api)):
    return api.approve_loan_request(request_id)

@router.post("/loan-requests/{request_id}/reject", response_model=LoanRequest)
@translates_errors
def reject_loan_request(request_id: int, body: Optional[ReviewNotes] = None,
                        api: CirculationAPI = Depends(get_api)):
    return api.reject_loan_request(request_id, notes=body.notes if body else None)

@router.delete("/loan-requests/{request_id}", response_model=LoanRequest)
@translates_errors
def cancel_loan_request(request_id: int, api: CirculationAPI = Depends(get_api)):
    return api.cancel_loan_request(request_id)


# Renewal requests

@router.get("/renewal-requests", response_model=List[RenewalRequest])
def get_renewal_requests(user_id: Optional[int] = None, status: Optional[RequestStatus] = None,
                         api: CirculationAPI = Depends(get_api)):
    return api.renewal_requests(user_id=user_id, status=status)

@router.post("/renewal-requests", response_model=RenewalRequest, status_code=status.HTTP_201_CREATED)
@translates_errors
def create_renewal_request(body: RenewalRequestBody, api: CirculationAPI = Depends(get_api)):
    return api.create_renewal_request(body.loan_id, body.user_id)

@router.post("/renewal-requests/{request_id}/approve", response_model=Renewal)
@translates_errors
def approve_renewal_request(request_id: int, api: CirculationAPI = Depends(get_api)):
    new_due_date = api.approve_renewal_request(request_id)
    loan_id = api.get_renewal_request(request_id).loan_id
    return Renewal(loan_id=loan_id, new_due_date=new_due_date)

@router.post("/renewal-requests/{request_id}/reject", response_model=RenewalRequest)
@translates_errors
def reject_renewal_request(request_id: int, body: Optional[ReviewNotes] = None,
                           api: CirculationAPI = Depends(get_api)):
    return api.reject_renewal_request(request_id, notes=body.notes if body else None)

@router.delete("/renewal-requests/{request_id}", response_model=RenewalRequest)
@translates_errors
def cancel_renewal_request(request_id: int, api: CirculationAPI = Depends(get_api)):
    return api.cancel_renewal_request(request_id)


# Reports

@router.get("/reports/dashboard", response_model=DashboardStats)
def get_dashboard(api: CirculationAPI = Depends(get_api)):
    return DashboardStats.model_validate(api.dashboard_stats())

@router.get("/reports/popular-books", response_model=List[PopularBook])
def get_popular_books(limit: Optional[int] = None, api: CirculationAPI = Depends(get_api)):
    return [PopularBook.model_validate(row) for row in api.popular_books(limit=limit)]

@router.get("/reports/active-users", response_model=List[ActiveUser])
def get_active_users(limit: Optional[int] = None, api: CirculationAPI = Depends(get_api)):
    return [ActiveUser.model_validate(row) for row in api.most_active_users(limit=limit)]
