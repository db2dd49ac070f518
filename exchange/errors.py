class ExchangeServiceError(Exception):
    pass


class ValidationError(ExchangeServiceError):
    pass


class ConflictError(ExchangeServiceError):
    """A lifecycle guard rejected the transition; nothing was written."""
    pass


class NotFoundError(ExchangeServiceError):
    pass


class ForbiddenError(ExchangeServiceError):
    pass


class ExternalServiceError(ExchangeServiceError):
    pass
