"""
Lifecycle state shared by users and groups.
"""

import logging
from typing import Optional

from ad_sync.registry import RID

logger = logging.getLogger(__name__)


class DirectoryObject:
    """
    Base for objects owned by a Container.

    New objects start detached (``removed`` is True) and in the
    "not loaded, modified" state. Their container flips ``removed`` when it
    accepts or releases them, and load/sync call ``loaded()`` once the object
    is known to exist in the directory.
    """

    def __init__(self, container, rid: Optional[int] = None):
        self._container = container
        self._rid = rid
        self._removed = True
        self._modified = True
        self._loaded = False

    @property
    def container(self):
        return self._container

    @property
    def directory(self):
        return self._container.directory

    @property
    def rid(self) -> Optional[int]:
        return self._rid

    @property
    def removed(self) -> bool:
        return self._removed

    @property
    def modified(self) -> bool:
        return self._modified

    @property
    def is_loaded(self) -> bool:
        """True once the object has been loaded from or created in the directory."""
        return self._loaded

    def loaded(self) -> None:
        """
        Mark the object as present in the directory.

        Only the first call has any effect: it sets the loaded flag and clears
        ``modified``. Later calls leave ``modified`` alone so that edits made
        after loading are not forgotten.
        """
        if self._loaded:
            return
        self._loaded = True
        self._modified = False

    def _touch(self) -> None:
        self._modified = True

    def _assign_rid(self, rid: int) -> None:
        """Set the RID handed out by the directory. Does nothing if one is set."""
        if self._rid is not None:
            return
        if not self._removed:
            self.directory.registry.reserve(RID, rid)
        self._rid = rid
