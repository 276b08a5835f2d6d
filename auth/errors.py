"""
auth/errors.py -- The typed failure raised (or rendered) by the auth core.
"""


class AuthError(Exception):
    """An expected authentication failure.

    Auth either raises this or returns its message string, depending on the
    instance's throw_exceptions policy. Failure hooks always receive the
    instance, whichever mode is active.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
