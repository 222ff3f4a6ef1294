from fastapi import status


class GuildHallError(Exception):
    """Base error for every expected failure of a quest operation.

    The message is user facing; the API layer turns it into the
    ``{"success": false, "error": ...}`` envelope.
    """
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message())
        self.message = str(self)

    @classmethod
    def default_message(cls) -> str:
        return "Operation failed"

    @property
    def code(self) -> str:
        return type(self).__name__


class NotAuthenticatedError(GuildHallError):
    status_code = status.HTTP_401_UNAUTHORIZED

    @classmethod
    def default_message(cls):
        return "Not authenticated"


class NotAuthorizedError(GuildHallError):
    status_code = status.HTTP_403_FORBIDDEN

    @classmethod
    def default_message(cls):
        return "You do not have permission to perform this action"


class NotFoundError(GuildHallError):
    status_code = status.HTTP_404_NOT_FOUND

    @classmethod
    def default_message(cls):
        return "Not found"


class ValidationError(GuildHallError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    @classmethod
    def default_message(cls):
        return "Invalid input"


class FeedbackRequiredError(ValidationError):
    @classmethod
    def default_message(cls):
        return "Feedback is required when rejecting a submission"


class ExclusiveCodeRequiredError(ValidationError):
    @classmethod
    def default_message(cls):
        return "This is an exclusive quest. Please enter the unlock code."


class InvalidCodeError(ValidationError):
    @classmethod
    def default_message(cls):
        return "Invalid unlock code. Please check and try again."


# status precondition failures
class InvalidStateError(GuildHallError):
    status_code = status.HTTP_409_CONFLICT

    @classmethod
    def default_message(cls):
        return "This action is not allowed in the current state"


class AlreadyAcceptedError(InvalidStateError):
    @classmethod
    def default_message(cls):
        return "You have already accepted this quest"


class NotAvailableError(InvalidStateError):
    @classmethod
    def default_message(cls):
        return "This objective is locked. Complete the prerequisite objectives first."


class AlreadySubmittedError(InvalidStateError):
    @classmethod
    def default_message(cls):
        return "Evidence has already been submitted for this objective"


class AlreadyApprovedError(InvalidStateError):
    @classmethod
    def default_message(cls):
        return "This objective has already been approved"


class CannotUnlockError(InvalidStateError):
    @classmethod
    def default_message(cls):
        return "Cannot uncheck a locked objective. Complete prerequisites first."


class QuestInactiveError(InvalidStateError):
    @classmethod
    def default_message(cls):
        return "Cannot modify objectives for completed or inactive quests"


class AlreadyClaimedError(InvalidStateError):
    @classmethod
    def default_message(cls):
        return "The reward for this quest has already been claimed"


class AlreadyRequestedError(InvalidStateError):
    @classmethod
    def default_message(cls):
        return "An extension has already been requested for this quest"


class StaleStateError(Exception):
    """Raised by the store when a conditional write finds an unexpected status."""

    def __init__(self, current_status=None, reason: str = "status"):
        super().__init__(f"Conditional write refused: {reason} (status {current_status!r})")
        self.current_status = current_status
        self.reason = reason
