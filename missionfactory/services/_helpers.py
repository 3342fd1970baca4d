"""Shared utilities for the service layer."""

import hashlib
import time
from uuid import uuid4

DAY: int = 24 * 60 * 60
WEEK: int = 7 * DAY
MONTH: int = 30 * DAY


def new_id() -> str:
    return str(uuid4())


def unix_now() -> int:
    return int(time.time())


def normalize_address(address: str) -> str:
    return address.strip().lower()


def secret_commitment(passphrase: str, enrollment_start: int) -> str:
    """Commitment stored on invite-only missions: sha256(passphrase || start as uint256)."""
    digest = hashlib.sha256()
    digest.update(passphrase.encode("utf-8"))
    digest.update(int(enrollment_start).to_bytes(32, "big"))
    return digest.hexdigest()
