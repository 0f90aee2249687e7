"""
Client Portal Backend — Credential Verification & Client Resolution
====================================================================

What:  Decides who the caller is and which client's rows they may read.
How:   Two credential schemes, both checked with constant-time comparison:

    Secure key (GET /api/client-data)
        The front-end page for a client sends `secureKey` and a unix
        `timestamp`. The key is derived per client:

            "<prefix>-" + base64(seed) with every non-alphanumeric char removed

        e.g. prefix "ke", seed "king-ed-2025" → "ke-a2luZy1lZC0yMDI1"

        A member must present their own client's key (or one of its legacy
        keys). An admin may present ANY known client key; the key then
        tells us which client page the admin opened.

    Auth hash (GET /api/secure-notion)
        HMAC-SHA256 over "<userId>:<email>:<bucket>" where bucket is
        floor(unix_time / auth_hash_window), hex encoded.

Who:   Called by RecordsService and the proxy routes.
"""

import base64
import hashlib
import hmac
import logging
import re
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from portal.config import ClientAccount, settings
from portal.exceptions import AccessDeniedError, ValidationError

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def derive_client_key(prefix: str, seed: str) -> str:
    """Build the secure key a client page generates from its prefix and seed."""
    encoded = base64.b64encode(seed.encode("utf-8")).decode("ascii")
    return f"{prefix}-{_NON_ALNUM.sub('', encoded)}"


def _matches_any(candidate: str, keys: Iterable[str]) -> bool:
    # Checks every key so timing does not reveal which one matched
    matched = False
    for key in keys:
        if hmac.compare_digest(candidate.encode("utf-8"), key.encode("utf-8")):
            matched = True
    return matched


@dataclass(frozen=True)
class KeyVerification:
    """Outcome of verify_secure_key()."""

    ok: bool
    is_admin: bool = False
    client_from_key: Optional[str] = None


DENIED = KeyVerification(ok=False)


class ClientDirectory:
    """
    Server-side mapping of users and keys to clients.

    Built from settings.clients / settings.admin_emails; never from anything
    the caller sends.
    """

    def __init__(self, clients: List[ClientAccount], admin_emails: Iterable[str] = ()):
        self._clients: Dict[str, ClientAccount] = {c.name: c for c in clients}
        self._admins = {email.strip().lower() for email in admin_emails if email.strip()}
        self._member_to_client: Dict[str, str] = {}
        for client in clients:
            for member in client.members:
                self._member_to_client[member.lower()] = client.name

    @classmethod
    def from_settings(cls) -> "ClientDirectory":
        return cls(settings.clients, settings.admin_emails_list)

    @property
    def client_names(self) -> List[str]:
        return list(self._clients)

    def is_admin(self, email: Optional[str]) -> bool:
        return (email or "").strip().lower() in self._admins

    def client_for_user(self, email: Optional[str]) -> Optional[str]:
        """Client mapped to a member e-mail; None for admins and unknown users."""
        normalized = (email or "").strip().lower()
        if normalized in self._admins:
            return None
        return self._member_to_client.get(normalized)

    def keys_for(self, client_name: str) -> List[str]:
        """Every key accepted for a client: the derived key first, then legacy keys."""
        client = self._clients.get(client_name)
        if client is None:
            return []
        return [derive_client_key(client.key_prefix, client.key_seed), *client.legacy_keys]

    def client_for_key(self, secure_key: str) -> Optional[str]:
        """Reverse lookup: which client's page generated this key."""
        found = None
        for name in self._clients:
            if found is None and _matches_any(secure_key, self.keys_for(name)):
                found = name
        return found


def _parse_timestamp(timestamp) -> Optional[int]:
    try:
        return int(str(timestamp).strip())
    except (TypeError, ValueError):
        return None


def verify_secure_key(
    directory: ClientDirectory,
    user_email: str,
    secure_key: str,
    timestamp,
    now: Optional[float] = None,
) -> KeyVerification:
    """
    Verify a secure-key credential.

    Rules:
        - timestamp must be an integer within [now - key_max_age, now + key_max_skew]
        - admin: key must belong to some known client → client_from_key = that client
        - member: key must be one of their own client's keys → client_from_key = their client
        - anyone else: denied

    Returns:
        KeyVerification; `ok=False` never carries admin status or a client.
    """
    current = int(now if now is not None else time.time())
    request_time = _parse_timestamp(timestamp)
    if request_time is None:
        logger.info("Secure key rejected: unparseable timestamp")
        return DENIED

    drift = current - request_time
    if drift > settings.key_max_age or drift < -settings.key_max_skew:
        logger.info("Secure key rejected: timestamp drift %ds outside window", drift)
        return DENIED

    if directory.is_admin(user_email):
        client_from_key = directory.client_for_key(secure_key)
        if client_from_key is None:
            logger.info("Secure key rejected: admin presented an unknown key")
            return DENIED
        return KeyVerification(ok=True, is_admin=True, client_from_key=client_from_key)

    user_client = directory.client_for_user(user_email)
    if user_client is None:
        logger.info("Secure key rejected: user has no client mapping")
        return DENIED

    if not _matches_any(secure_key, directory.keys_for(user_client)):
        logger.info("Secure key rejected: key does not match the user's client")
        return DENIED

    return KeyVerification(ok=True, is_admin=False, client_from_key=user_client)


def resolve_client(
    directory: ClientDirectory,
    user_email: str,
    client_param: Optional[str],
    verification: KeyVerification,
) -> str:
    """
    Pick the client whose rows this request may read.

    Priority:
        1. explicit ?client=  (admin: anything; member: must be their own client)
        2. client identified by the secure key
        3. member's own mapping

    Raises:
        AccessDeniedError: member asked for another client, or has no mapping
        ValidationError:   admin gave no client context at all
    """
    requested = (client_param or "").strip()
    user_client = directory.client_for_user(user_email)

    if requested:
        if verification.is_admin:
            return requested
        if requested != user_client:
            raise AccessDeniedError(context={"requested": requested})
        return user_client

    if verification.client_from_key:
        client_name = verification.client_from_key
        if not verification.is_admin and user_client and client_name != user_client:
            raise AccessDeniedError(context={"requested": client_name})
        return client_name

    if verification.is_admin:
        raise ValidationError(
            message="Admin access requires client context (add ?client=...)",
            field="client",
        )
    if not user_client:
        raise AccessDeniedError(message="No client access for user")
    return user_client


def compute_auth_hash(
    user_id: str,
    user_email: str,
    secret: str,
    now: Optional[float] = None,
) -> str:
    """HMAC the front-end signs for the current time bucket."""
    current = now if now is not None else time.time()
    bucket = int(current // settings.auth_hash_window)
    message = f"{user_id}:{user_email}:{bucket}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_user_auth(
    user_id: Optional[str],
    user_email: Optional[str],
    auth_hash: Optional[str],
    secret: str,
    now: Optional[float] = None,
) -> bool:
    """True when auth_hash is the HMAC for the current time bucket."""
    if not user_id or not user_email or not auth_hash or not secret:
        return False
    expected = compute_auth_hash(user_id, user_email, secret, now)
    return hmac.compare_digest(auth_hash.encode("utf-8"), expected.encode("utf-8"))
