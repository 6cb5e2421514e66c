"""
Weak registry membership for database handles.

A connection keeps ``db_register``, a mapping of database name to a
``weakref.ref`` of the handle currently serving that name. Handles hold a
strong reference to their connection, so the registry must never keep
handles alive. When a handle is collected, ``release()`` drops its entry.

Entries are removed by identity, never by name: a newer handle registered
under the same name survives the collection of an older one. Dead entries
are pruned whenever the register is scanned.
"""

import logging
import sys
import weakref
from typing import Any, MutableMapping

logger = logging.getLogger(__name__)

# Set once interpreter shutdown is observed or a cleanup attempt fails.
# Never reset: after that point the connection may be half torn down.
_global_destruction = False


def in_global_destruction() -> bool:
    """Whether cleanup must be skipped for the rest of the process."""
    global _global_destruction
    if not _global_destruction and sys.is_finalizing():
        _global_destruction = True
    return _global_destruction


def prune(register: MutableMapping[str, weakref.ref], db: Any = None) -> list[str]:
    """
    Drop dead entries, and entries resolving to ``db``, from ``register``.

    Args:
        register: Mapping of database name to weak handle reference
        db: Handle whose entries should go (None to only drop dead ones)

    Returns:
        Names of the removed entries
    """
    removed = []
    for name, ref in list(register.items()):
        target = ref()
        if target is None or (db is not None and target is db):
            del register[name]
            removed.append(name)
    return removed


def release(db: Any) -> None:
    """
    Remove ``db`` from its connection's registry.

    Called while ``db`` is being destroyed. Best effort: any failure marks
    the process as tearing down and is not propagated.
    """
    global _global_destruction
    if in_global_destruction():
        return

    connection = db.__dict__.get("_connection")
    if connection is None or isinstance(connection, weakref.ReferenceType):
        return

    try:
        db._connection = weakref.ref(connection)
        del connection

        connection = db._connection()
        if connection is not None:
            removed = prune(connection.db_register, db)
            if removed:
                logger.debug(f"Released database handles: {', '.join(removed)}")
    except Exception:  # noqa: BLE001 - must never escape a finalizer
        _global_destruction = True
