"""
Errors raised while building a construct tree.
"""

__all__ = 'ConstructError', 'ValidationError', 'AmbiguousDependencyCycle'


class ConstructError(Exception):
    """
    Base for everything raised by the construct layer and the policy core.

    If a construct is given, its path is prepended to the message.
    """
    def __init__(self, msg, construct=None):
        self.construct = construct
        path = getattr(construct, 'path', None)
        if path:
            msg = f"{msg} (at '{path}')"
        super().__init__(msg)


class ValidationError(ConstructError):
    """
    Raised synchronously for requests that can never make sense.
    """


class AmbiguousDependencyCycle(ConstructError):
    """
    Raised by the arena when a new dependency edge would close a cycle.

    Callers that only want ordering (not correctness) catch this and drop the
    edge.
    """
