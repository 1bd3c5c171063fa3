
class CirculateError(Exception): pass

class InvalidRequestError(CirculateError): pass

class NotFoundError(CirculateError): pass

class UserNotFoundError(NotFoundError): pass

class BookNotFoundError(NotFoundError): pass

class LoanNotFoundError(NotFoundError): pass

class FineNotFoundError(NotFoundError): pass

class ReservationNotFoundError(NotFoundError): pass

class RequestNotFoundError(NotFoundError): pass

class BookExistsError(CirculateError): pass

class UserExistsError(CirculateError): pass

class DatabaseInsertError(CirculateError): pass

class ConflictError(CirculateError):
    """A shared counter changed between the check and the write."""

class PolicyDenied(CirculateError):
    """A circulation rule refused the operation.

    `reason` is a stable, machine-checkable code; the exception message is the
    human readable explanation shown to patrons and librarians.
    """

    def __init__(self, reason, message):
        super().__init__(message)
        self.reason = getattr(reason, "value", reason)
        self.message = message

    def to_dict(self):
        return {"reason": self.reason, "message": self.message}
