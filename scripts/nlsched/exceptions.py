"""Exceptions raised by newsletter collaborators.

Everything here is recoverable at the per-newsletter boundary: the scheduler
logs it, leaves the newsletter untouched and moves on to the next candidate.
"""


class ExternalServiceError(Exception):
    """A collaborator (mailer, metadata lookup, embed lookup) failed."""


class MalformedRecurrenceRule(ExternalServiceError):
    """A newsletter's recurrence rule could not be parsed."""


class LookupFailed(ExternalServiceError):
    """URL metadata or embed resolution failed."""


class MailerError(ExternalServiceError):
    """The Mailer API rejected a request or could not be reached."""

    def __init__(self, message: str, status_code=None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MissingRenderOutput(MailerError):
    """The generator response lacked the HTML or text body."""
