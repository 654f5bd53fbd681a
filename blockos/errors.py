"""
Error taxonomy for BlockOS.

Every failure the engine raises is a BlockOSError. Callers that degrade
gracefully (calendar reconciliation, routine sync) catch the base class per
item; callers that must stop (session transitions) let it propagate.
"""


class BlockOSError(Exception):
    """Base class for all engine errors."""

    pass


class ValidationError(BlockOSError):
    """Malformed input: bad time range, end <= start, unknown enum value."""

    pass


class InvalidTransitionError(ValidationError):
    """A session or timer transition that the current state does not allow."""

    pass


class NotFoundError(BlockOSError):
    """Referenced block, session or routine does not exist for this owner."""

    pass


class ConflictError(BlockOSError):
    """Uniqueness violated: duplicate calendar ref or routine/day instance."""

    pass


class UpstreamError(BlockOSError):
    """External calendar fetch or push failed."""

    pass


class PersistenceError(BlockOSError):
    """The store could not complete a read or write."""

    pass
