"""Synthesis of temporary identities when durable account creation fails."""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Callable, Optional

from schemas import ProfileDefaults, ProvisionedIdentity

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "temp_"
DEFAULT_DISPLAY_NAME = "ProfAI Learner"

_TOKEN_ALPHABET = string.digits + string.ascii_lowercase
_TOKEN_LENGTH = 9


def random_token(length: int = _TOKEN_LENGTH) -> str:
    """Return a random base36 token."""

    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _display_name(
    display_name: Optional[str],
    first_name: Optional[str],
    last_name: Optional[str],
) -> str:
    if display_name and display_name.strip():
        return display_name.strip()
    joined = f"{first_name or ''} {last_name or ''}".strip()
    return joined or DEFAULT_DISPLAY_NAME


def provision_temporary(
    email: str,
    display_name: Optional[str] = None,
    *,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    clock: Callable[[], datetime] = _utcnow,
    token_source: Callable[[], str] = random_token,
) -> ProvisionedIdentity:
    """Build a non-persistent identity for ``email``.

    The id has the form ``temp_<epoch ms>_<token>``. The record is never
    written to the store and is always flagged ``is_temporary``.
    """

    created_at = clock()
    millis = int(created_at.timestamp() * 1000)
    identity = ProvisionedIdentity(
        id=f"{TEMP_ID_PREFIX}{millis}_{token_source()}",
        email=(email or "").strip(),
        display_name=_display_name(display_name, first_name, last_name),
        first_name=first_name or None,
        last_name=last_name or None,
        profile_defaults=ProfileDefaults(),
        created_at=created_at,
    )
    logger.info("Provisioned temporary identity %s", identity.id)
    return identity


def is_temporary_id(user_id: Optional[str]) -> bool:
    return bool(user_id) and str(user_id).startswith(TEMP_ID_PREFIX)
