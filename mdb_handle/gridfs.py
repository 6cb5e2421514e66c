"""
GridFS store bound to a database handle.

Only exposes the files and chunks collections and the list of stored
file names.
"""

from typing import TYPE_CHECKING, Any

from bson.son import SON

from .collection import Collection
from .constants import DEFAULT_GRIDFS_PREFIX

if TYPE_CHECKING:
    from .connection import Callback
    from .database import Database


class GridFS:
    """
    GridFS file store.

    Attributes:
        db: Database handle this store belongs to
        prefix: Collection prefix (``fs`` by default)
    """

    def __init__(self, db: "Database", prefix: str = DEFAULT_GRIDFS_PREFIX) -> None:
        self.db = db
        self.prefix = prefix

    def __repr__(self) -> str:
        return f"{type(self).__name__}(db={self.db.name!r}, prefix={self.prefix!r})"

    @property
    def files(self) -> Collection:
        return self.db.collection(f"{self.prefix}.files")

    @property
    def chunks(self) -> Collection:
        return self.db.collection(f"{self.prefix}.chunks")

    # Must precede list(), which shadows the builtin for the rest of the class body
    async def _list(self) -> list[str]:
        doc = await self.db.command_async(
            SON([("distinct", self.files.name), ("key", "filename")])
        )
        return list(doc.get("values", []))

    def list(self, callback: "Callback | None" = None) -> Any:
        """
        Names of all stored files.

        Args:
            callback: Called as ``callback(gridfs, err, names)``; omit to block
        """
        return self.db.connection.run(self._list(), callback, self)
