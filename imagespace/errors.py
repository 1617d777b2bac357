class ImageSpaceError(Exception):
    """Base error. `message` is safe to show to API callers."""

    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class NotFoundError(ImageSpaceError):
    status_code = 404


class ValidationError(ImageSpaceError):
    status_code = 400


class ExternalCapabilityError(ImageSpaceError):
    status_code = 502


class StoreWriteError(ImageSpaceError):
    pass


class StoreReadError(ImageSpaceError):
    pass


class ConsistencyRollbackError(ImageSpaceError):
    """A compensating action failed; the stores may now disagree."""

    def __init__(self, message, original=None, compensation=None):
        super().__init__(message)
        self.original = original
        self.compensation = compensation
