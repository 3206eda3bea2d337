class QuizError(Exception):
    """Base class for quiz service errors.

    ``user_message`` is the short, plain-language text shown to clients; the
    exception's own args keep the technical detail for the logs.
    ``status_code`` is what the HTTP layer answers with; ``retryable`` errors
    tell the client that asking again may work.
    """

    user_message = "Something went wrong."
    status_code = 500
    retryable = False

    def __init__(self, detail: str = "", user_message: str = None):
        super().__init__(detail or self.user_message)
        if user_message:
            self.user_message = user_message


class QuestionLoadError(QuizError):
    user_message = "Could not load questions. Please try again."
    status_code = 503
    retryable = True


class NoQuestionsError(QuizError):
    user_message = "There are no questions available."
    status_code = 404


class SessionNotFoundError(QuizError):
    user_message = "Quiz session not found."
    status_code = 404


class InvalidAnswerError(QuizError):
    user_message = "This question can no longer be answered."
    status_code = 409


class PermissionDeniedError(QuizError):
    user_message = "You do not have permission to do that."
    status_code = 403
