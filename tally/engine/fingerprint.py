"""
tally.engine.fingerprint — Privacy-Preserving Client Identity
==============================================================

Client addresses are never persisted.  Only a salted one-way digest is
stored in ``download_trackers.ip_hash``; the salt is a deployment secret
(``DOWNLOAD_IP_SALT``) so the digest can't be brute-forced back from the
small IPv4 space without it.
"""

from __future__ import annotations

import hashlib

# Length of the hex digest stored in download_trackers.ip_hash (128 bits)
FINGERPRINT_LENGTH = 32


def fingerprint_address(address: str, salt: str) -> str:
    """Return the salted MD5 digest of *address* as 32 lowercase hex chars.

    Raises
    ------
    ValueError
        If *salt* is empty.
    """
    if not salt:
        raise ValueError("A non-empty salt is required to fingerprint client addresses")

    digest = hashlib.md5(usedforsecurity=False)
    digest.update(salt.encode("utf-8"))
    digest.update(address.strip().encode("utf-8"))
    return digest.hexdigest()
