
class SimpusError(Exception): pass

class ValidationError(SimpusError): pass

class ForbiddenError(SimpusError): pass

class InvalidCredentialsError(SimpusError): pass

class StorageError(SimpusError): pass

# Missing records

class NotFoundError(SimpusError): pass

class UserNotFoundError(NotFoundError): pass

class BookNotFoundError(NotFoundError): pass

class LoanNotFoundError(NotFoundError): pass

class CategoryNotFoundError(NotFoundError): pass

class NotificationNotFoundError(NotFoundError): pass

# Conflicts

class UserExistsError(SimpusError): pass

class CategoryExistsError(SimpusError): pass

class BookInUseError(SimpusError): pass

# Loan lifecycle

class LoanError(SimpusError): pass

class OutOfStockError(LoanError): pass

class LoanLimitExceededError(LoanError): pass

class InvalidDurationError(LoanError): pass

class AlreadyReturnedError(LoanError): pass

NotBorrowedError = AlreadyReturnedError

class OverdueError(LoanError): pass

# Cover uploads

class InvalidFileError(ValidationError): pass

class FileTooLargeError(ValidationError): pass
