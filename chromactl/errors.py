class GenerationError(Exception):
    """Raised by a generation collaborator. The message is all the classifier needs."""

    def __init__(self, message: str = "Unknown error"):
        super().__init__(message)
        self.message = message


class TransientError(GenerationError):
    """Overload, timeout, rate limit."""


class PolicyError(GenerationError):
    """Content rejected by the service's moderation layer."""


class UnknownError(GenerationError):
    pass


class InvariantViolation(RuntimeError):
    """Internal bookkeeping broke; the affected batch must not continue."""


def error_message(err) -> str:
    if err is None:
        return "Unknown error"
    if isinstance(err, GenerationError):
        return err.message
    text = str(err)
    return text if text else type(err).__name__
