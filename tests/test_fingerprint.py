"""
tests/test_fingerprint.py — Client Fingerprints
================================================
"""

from __future__ import annotations

import hashlib

import pytest

from tally.engine.fingerprint import FINGERPRINT_LENGTH, fingerprint_address


class TestFingerprint:
    def test_deterministic(self):
        assert fingerprint_address("1.2.3.4", "salt") == fingerprint_address("1.2.3.4", "salt")

    def test_fixed_length_hex(self):
        digest = fingerprint_address("2001:db8::1", "salt")
        assert len(digest) == FINGERPRINT_LENGTH
        int(digest, 16)  # valid hex

    def test_different_addresses_differ(self):
        assert fingerprint_address("1.2.3.4", "salt") != fingerprint_address("1.2.3.5", "salt")

    def test_salt_changes_digest(self):
        assert fingerprint_address("1.2.3.4", "a") != fingerprint_address("1.2.3.4", "b")

    def test_address_not_in_digest(self):
        assert "1.2.3.4" not in fingerprint_address("1.2.3.4", "salt")

    def test_matches_salted_md5(self):
        expected = hashlib.md5(b"salt1.2.3.4").hexdigest()
        assert fingerprint_address("1.2.3.4", "salt") == expected

    def test_surrounding_whitespace_ignored(self):
        assert fingerprint_address(" 1.2.3.4\n", "salt") == fingerprint_address("1.2.3.4", "salt")

    def test_empty_salt_rejected(self):
        with pytest.raises(ValueError):
            fingerprint_address("1.2.3.4", "")
