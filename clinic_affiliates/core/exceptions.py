"""Domain errors raised by services and translated to HTTP errors by routes."""


class CommissionError(ValueError):
    """Base class for commission domain errors."""


class NotFoundError(CommissionError):
    """Referenced record does not exist in the clinic."""


class PlanLockedError(CommissionError):
    """Plan has been paid against and can no longer be edited."""


class ConflictError(CommissionError):
    """Record clashes with an existing one (duplicate tier level or name)."""
