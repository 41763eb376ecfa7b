from enum import Enum


class FailureKind(str, Enum):
    UNKNOWN_TEAM = "UnknownTeam"
    BAD_CREDENTIALS = "BadCredentials"
    ALREADY_ACTIVE = "AlreadyActive"
    ALREADY_OCCUPIED = "AlreadyOccupied"
    QUOTA_EXCEEDED = "QuotaExceeded"
    NOT_OWNER = "NotOwner"
    INVALID_STATE = "InvalidState"
    INVALID_PR_URL = "InvalidPrUrl"
    NOT_FOUND = "NotFound"
    NOT_LOGGED_IN = "NotLoggedIn"
    NOT_AUTHORIZED = "NotAuthorized"
    INVALID_INPUT = "InvalidInput"
    ALREADY_EXISTS = "AlreadyExists"
    WRITE_CONFLICT = "WriteConflict"
    STORE_UNAVAILABLE = "StoreUnavailable"
    TIMEOUT = "Timeout"


class ArenaException(Exception):
    """Base exception for every failure a command can report back to a client."""
    kind = FailureKind.STORE_UNAVAILABLE
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# Login-time failures

class UnknownTeamException(ArenaException):
    kind = FailureKind.UNKNOWN_TEAM
    default_message = "Team not recognized. Contact admin."

class BadCredentialsException(ArenaException):
    kind = FailureKind.BAD_CREDENTIALS
    default_message = "Invalid credentials."

class AlreadyActiveException(ArenaException):
    kind = FailureKind.ALREADY_ACTIVE
    default_message = "This team is already active. Only one active session allowed."


# Command precondition failures

class AlreadyOccupiedException(ArenaException):
    kind = FailureKind.ALREADY_OCCUPIED
    default_message = "This issue is no longer open."

class QuotaExceededException(ArenaException):
    kind = FailureKind.QUOTA_EXCEEDED
    default_message = "Your team already holds the maximum number of issues."

class NotOwnerException(ArenaException):
    kind = FailureKind.NOT_OWNER
    default_message = "This issue is occupied by another team."

class InvalidStateException(ArenaException):
    kind = FailureKind.INVALID_STATE
    default_message = "This action is not allowed in the issue's current state."

class InvalidPrUrlException(ArenaException):
    kind = FailureKind.INVALID_PR_URL
    default_message = "Enter a pull request link like https://github.com/owner/repo/pull/123."

class NotFoundException(ArenaException):
    kind = FailureKind.NOT_FOUND
    default_message = "The requested item does not exist."

class NotLoggedInException(ArenaException):
    kind = FailureKind.NOT_LOGGED_IN
    default_message = "Log in as a team first."

class NotAuthorizedException(ArenaException):
    kind = FailureKind.NOT_AUTHORIZED
    default_message = "Admin access required."

class InvalidInputException(ArenaException):
    kind = FailureKind.INVALID_INPUT
    default_message = "Some of the submitted fields are invalid."

class AlreadyExistsException(ArenaException):
    kind = FailureKind.ALREADY_EXISTS
    default_message = "An item with this name already exists."

class WriteConflictException(ArenaException):
    kind = FailureKind.WRITE_CONFLICT
    default_message = "The issue kept changing while saving. Please retry."


# Transport failures

class StoreUnavailableException(ArenaException):
    """Raised when the state store cannot be reached or rejects an operation."""
    kind = FailureKind.STORE_UNAVAILABLE
    default_message = "The server could not be reached. Please retry."

class CommandTimeoutException(ArenaException):
    kind = FailureKind.TIMEOUT
    default_message = "The server took too long to answer. Please retry."
