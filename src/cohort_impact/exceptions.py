"""Exceptions raised by the cohort impact package."""


class InvalidInputError(ValueError):
    """Raised when an analysis receives input it cannot work with."""
