"""Errors raised inside the request pipeline and turned into JSON responses."""


class AppError(Exception):
    """An error that carries the HTTP status it should be reported with."""

    status_code = 500
    default_message = 'Internal Server Error'

    def __init__(self, message=None, status_code=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code


class CorsRejected(AppError):
    status_code = 403
    default_message = 'Not allowed by CORS'


class DatabaseUnavailable(AppError):
    status_code = 503
    default_message = 'Database unavailable'
