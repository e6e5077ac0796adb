"""
Exceptions raised by the in-memory directory model.

Every mutation of the model checks its invariants before changing any state,
so when one of these exceptions is raised the graph is left exactly as it was
before the call.
"""


class InvariantViolation(Exception):
    """Raised when an operation would break a uniqueness or relationship rule."""
    pass


class DuplicateIdentifierError(InvariantViolation):
    """Raised when a RID, UID or GID is already reserved in the directory."""

    def __init__(self, namespace: str, value):
        self.namespace = namespace
        self.value = value
        if value is None:
            message = f"A {namespace.upper()} value is required"
        else:
            message = f"{namespace.upper()} {value} is already in use in the directory"
        super().__init__(message)
