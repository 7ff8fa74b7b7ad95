"""
Errors raised by policy synthesis.
"""
from cutils.errors import ConstructError, ValidationError, AmbiguousDependencyCycle

__all__ = (
    'ConstructError', 'ValidationError', 'AmbiguousDependencyCycle',
    'InvalidPolicyStatement', 'UnresolvableCrossStackReference', 'NoRegionError',
)


class InvalidPolicyStatement(ConstructError):
    """
    A statement reached finalize in a state no policy can contain.
    """
    def __init__(self, errors, construct=None):
        self.errors = list(errors)
        super().__init__(
            "Invalid policy statements:\n" + "\n".join(f"  {e}" for e in self.errors),
            construct,
        )


class UnresolvableCrossStackReference(ConstructError):
    """
    A value used in another stack has no stable identity to export.
    """


class NoRegionError(ValidationError):
    """
    Raised if we aren't able to detect the current region
    """
