class CrimeReportError(RuntimeError):
    """Base class for failures that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CrimeReportError):
    """Malformed or missing input."""

    status_code = 400


class NotFoundError(CrimeReportError):
    status_code = 404


class UpstreamError(CrimeReportError):
    """The database or the media service failed."""

    status_code = 500
