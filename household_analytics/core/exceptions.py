"""
Engine error taxonomy.

Input problems surface to the caller as either a validation failure or a
missing resource. Collaborator failures never reach this hierarchy; they are
recovered where the call is made.
"""


class AnalyticsError(Exception):
    """Base class for errors raised by the analytics engine."""


class InvalidInputError(AnalyticsError):
    """A date range, bucket key, amount or question could not be used."""


class NotFoundError(AnalyticsError):
    """The requested goal (or other record) does not exist in the family scope."""
