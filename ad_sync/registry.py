"""
Identifier registry for a single Active Directory graph.

Tracks the three numeric identifier namespaces that must be unique within a
directory: relative ids (users and groups), UNIX uids and UNIX gids.
"""

import logging
from typing import Dict, List, Optional, Set

from ad_sync.exceptions import DuplicateIdentifierError

logger = logging.getLogger(__name__)

RID = 'rid'
UID = 'uid'
GID = 'gid'

NAMESPACES = (RID, UID, GID)

# A missing value is only acceptable where the directory assigns it later.
REQUIRED_NAMESPACES = (UID, GID)


class IdentityRegistry:
    """
    Reservation table for directory identifiers.

    Only containers (and RID assignment during synchronization) reserve or
    release values. Entity constructors use ``is_reserved`` to validate
    before they ask their container to accept them.
    """

    def __init__(self):
        self._reserved: Dict[str, Set[int]] = {namespace: set() for namespace in NAMESPACES}

    def _namespace(self, namespace: str) -> Set[int]:
        try:
            return self._reserved[namespace]
        except KeyError:
            raise ValueError(f"Unknown identifier namespace: {namespace}")

    def reserve(self, namespace: str, value: Optional[int]) -> None:
        """
        Reserve a value in the given namespace.

        Args:
            namespace: One of ``rid``, ``uid`` or ``gid``
            value: Identifier to reserve

        Raises:
            DuplicateIdentifierError: If the value is already reserved, or is
                None in a namespace that requires a value
        """
        reserved = self._namespace(namespace)

        if value is None:
            if namespace in REQUIRED_NAMESPACES:
                raise DuplicateIdentifierError(namespace, None)
            return

        if value in reserved:
            raise DuplicateIdentifierError(namespace, value)

        reserved.add(value)
        logger.debug(f"Reserved {namespace} {value}")

    def release(self, namespace: str, value: Optional[int]) -> None:
        """Release a value. Releasing an unknown value does nothing."""
        if value is None:
            return
        self._namespace(namespace).discard(value)

    def is_reserved(self, namespace: str, value: Optional[int]) -> bool:
        if value is None:
            return False
        return value in self._namespace(namespace)

    def values(self, namespace: str) -> List[int]:
        """Return a sorted snapshot of the reserved values."""
        return sorted(self._namespace(namespace))
