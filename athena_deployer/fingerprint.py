"""Change detection by DDL fingerprint."""
import hashlib
from typing import Optional

from .config import HASH_KEY
from .models import RemoteTableState, TableSpec


def fingerprint(text: str) -> str:
    """128-bit BLAKE2b digest of the DDL text, as 32 hex chars."""
    return hashlib.blake2b(text.encode("utf-8"), digest_size=16).hexdigest()


def has_changed(spec: TableSpec, remote: Optional[RemoteTableState]) -> bool:
    """
    True when the table must be (re)created.

    A missing table counts as changed. An existing table is unchanged only if
    the fingerprint stamped on it matches the declared DDL.
    """
    if remote is None:
        return True
    return remote.parameters.get(HASH_KEY) != fingerprint(spec.ddl)
