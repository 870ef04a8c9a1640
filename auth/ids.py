"""
auth/ids.py -- Profile identifier codec.

Users are stored under their canonical hyphenated UUID
(xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx). The Yggdrasil wire format carries the
compact 32-character form without hyphens. Both directions check length only;
anything else is the caller's business.

A CodecError on a stored UUID means the identity record is corrupt. Callers do
not recover from it -- it propagates and the request fails with a 500.
"""

from __future__ import annotations

_UUID_LEN = 36
_ID_LEN = 32


class CodecError(ValueError):
    """Raised when an identifier has the wrong length for its form."""


def uuid_to_id(uuid: str) -> str:
    """Strip hyphens from a 36-char UUID, yielding the 32-char compact id."""
    if len(uuid) != _UUID_LEN:
        raise CodecError(f"Invalid UUID: expected {_UUID_LEN} characters, got {len(uuid)}")
    return uuid.replace("-", "")


def id_to_uuid(compact_id: str) -> str:
    """Reinsert hyphens into a 32-char compact id at offsets 8/12/16/20."""
    if len(compact_id) != _ID_LEN:
        raise CodecError(f"Invalid ID: expected {_ID_LEN} characters, got {len(compact_id)}")
    return "-".join(
        (
            compact_id[0:8],
            compact_id[8:12],
            compact_id[12:16],
            compact_id[16:20],
            compact_id[20:],
        )
    )
