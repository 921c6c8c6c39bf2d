# mailflow/errors.py
# Exception taxonomy shared by the store, scheduler, planner and mailer.


class MailflowError(Exception):
    """Base class for every error raised by mailflow."""


class StoreConnectionError(MailflowError, ConnectionError):
    """The job store could not be reached within the connect timeout."""


class SchedulingUnavailableError(MailflowError):
    """A job could not be persisted, even after one reconnect attempt."""


class ServiceUnavailableError(SchedulingUnavailableError):
    """The scheduler could not be initialized."""


class DuplicateHandlerError(MailflowError):
    def __init__(self, job_name: str):
        super().__init__(f"A handler is already registered for job {job_name!r}")
        self.job_name = job_name


class InvalidSchedulingOptionsError(MailflowError, ValueError):
    pass


class NoEligibleItemsError(MailflowError):
    """An immediate-send batch had nothing to schedule."""

    def __init__(self, missing_recipients: bool):
        if missing_recipients:
            message = (
                "None of your email nodes have recipient addresses. "
                "Please add recipient email addresses to your nodes."
            )
        else:
            message = "No valid email nodes found in the sequence."
        super().__init__(message)
        self.missing_recipients = missing_recipients


class MailError(MailflowError):
    pass


class MailVerificationError(MailError):
    """The SMTP transport failed its connectivity check."""


class MailDeliveryError(MailError):
    pass
