from __future__ import annotations


class PracticeError(Exception):
    pass


class StoreUnavailableError(PracticeError):
    """The remote store is not configured or could not be reached."""


class InvalidCredentialsError(PracticeError):
    pass


class DuplicateEmailError(PracticeError):
    pass


class ClientNotFoundError(PracticeError):
    pass
