"""Passcode and remote-sender authorization."""

import hmac
import logging
from typing import Optional

import bcrypt

from screentime.core.models import CommandResult, RemoteConfig
from screentime.persistence.store import QuotaStore

logger = logging.getLogger(__name__)

PASSCODE_KEY = "passcode"
DEFAULT_PASSCODE = "0000"
PASSCODE_LENGTH = 4


def hash_passcode(code: str, rounds: int = 12) -> str:
    """Hash a passcode using bcrypt"""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(code.encode("utf-8"), salt).decode("utf-8")


def check_passcode(code: str, code_hash: str) -> bool:
    """Verify a passcode against its hash"""
    try:
        return bcrypt.checkpw(code.encode("utf-8"), code_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored passcode hash is malformed")
        return False


def is_valid_passcode(code: str) -> bool:
    return len(code) == PASSCODE_LENGTH and code.isdigit()


class AuthorizationGate:
    """Checks the parent passcode and the remote channel's sender identity.

    There is no lockout or backoff on wrong codes.  A passcode stored in
    plain text by an older release is accepted and rehashed the first time
    it verifies.
    """

    def __init__(self, store: QuotaStore, remote: Optional[RemoteConfig] = None,
                 hash_rounds: int = 12) -> None:
        self.store = store
        self.remote = remote or RemoteConfig()
        self.hash_rounds = hash_rounds

    def ensure_passcode(self) -> None:
        """Store the hashed default passcode when none is configured."""
        if self.store.get(PASSCODE_KEY) is None:
            logger.info("No passcode configured; installing the default")
            self.store.set(PASSCODE_KEY, hash_passcode(DEFAULT_PASSCODE, self.hash_rounds))

    def verify(self, candidate: Optional[str]) -> bool:
        """Return True when *candidate* matches the configured passcode."""
        if not isinstance(candidate, str) or not candidate:
            return False
        stored = self.store.get(PASSCODE_KEY)
        if stored is None:
            stored = DEFAULT_PASSCODE
        if stored.startswith("$2"):
            return check_passcode(candidate, stored)

        # legacy plain-text value
        matched = hmac.compare_digest(candidate.encode("utf-8"), stored.encode("utf-8"))
        if matched:
            logger.info("Upgrading plain-text passcode to a salted hash")
            self.store.set(PASSCODE_KEY, hash_passcode(candidate, self.hash_rounds))
        return matched

    def change_passcode(self, old: str, new: str, new_confirm: str) -> CommandResult:
        """Replace the passcode after checking the current one and the confirmation."""
        if not self.verify(old):
            return CommandResult.unauthorized()
        if new != new_confirm:
            return CommandResult.rejected("passcode_mismatch")
        if not is_valid_passcode(new):
            return CommandResult.rejected("invalid_passcode")
        self.store.set(PASSCODE_KEY, hash_passcode(new, self.hash_rounds))
        logger.info("Passcode changed")
        return CommandResult.success()

    def is_authorized_sender(self, sender_id: Optional[int]) -> bool:
        """True only for the single configured remote admin identity."""
        admin = self.remote.admin_chat_id
        return admin is not None and sender_id is not None and sender_id == admin
