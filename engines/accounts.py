"""Account creation, profile lookup and profile updates with tiered fallback.

Signup never hard-fails on a storage outage: an unhealthy store or an
exhausted create operation yields a temporary identity flagged
``is_temporary``. Duplicate emails remain a user-correctable error.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import uuid4

from engines.caching import FallbackCache
from engines.errors import ConstraintViolation, NotFound, StoreError
from engines.gateway import GuardedStore
from engines.provisioning import DEFAULT_DISPLAY_NAME, is_temporary_id, provision_temporary
from engines.resilience import MISSING
from schemas import ProfileDefaults, ProvisionedIdentity, UserPayload

import mock_data

logger = logging.getLogger(__name__)

_PBKDF2_DIGEST = "sha256"
_PBKDF2_ITERATIONS = 200_000

STORE_UNAVAILABLE_WARNING = "Database unavailable - using temporary mode"
TEMPORARY_PROFILE_WARNING = "Temporary account - profile changes are not saved"
CACHED_PROFILE_WARNING = "Database unavailable - showing last known profile"
DEFAULT_PROFILE_WARNING = "Database unavailable - showing default profile"
DEMO_PROFILE_WARNING = "Demo account - showing demonstration data"
PROFILE_NOT_SAVED_WARNING = "Database unavailable - profile changes were not saved, please retry later"
DEMO_PROFILE_NOT_SAVED_WARNING = "Demo account - profile changes are not saved"


class DuplicateAccountError(Exception):
    """Raised when the email is already registered."""

    def __init__(self, email: str) -> None:
        super().__init__(f"An account with email {email} already exists")
        self.email = email


class AccountNotFoundError(Exception):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


def _generate_salt() -> str:
    return secrets.token_bytes(16).hex()


def _pbkdf2_hash(password: str, salt_hex: str) -> str:
    return hashlib.pbkdf2_hmac(
        _PBKDF2_DIGEST,
        password.encode("utf-8"),
        bytes.fromhex(salt_hex),
        _PBKDF2_ITERATIONS,
    ).hex()


def hash_password(password: str) -> Tuple[str, str]:
    salt_hex = _generate_salt()
    return _pbkdf2_hash(password, salt_hex), salt_hex


@dataclass
class SignupOutcome:
    user: UserPayload
    message: str
    degraded: bool = False
    warning: Optional[str] = None
    identity: Optional[ProvisionedIdentity] = None


@dataclass
class ProfileOutcome:
    user: UserPayload
    profile: Dict[str, Any]
    degraded: bool = False
    warning: Optional[str] = None


@dataclass
class ProfileUpdateOutcome:
    user: UserPayload
    profile: Dict[str, Any]
    persisted: bool = True
    degraded: bool = False
    warning: Optional[str] = None


class AccountService:
    def __init__(
        self,
        store: Any,
        guarded: GuardedStore,
        *,
        profile_cache: Optional[FallbackCache] = None,
        hasher: Callable[[str], Tuple[str, str]] = hash_password,
        provisioner: Callable[..., ProvisionedIdentity] = provision_temporary,
    ) -> None:
        self.store = store
        self.guarded = guarded
        self.profile_cache = profile_cache or FallbackCache(max_size=1024)
        self._hasher = hasher
        self._provision = provisioner

    def _temporary(
        self,
        email: str,
        first_name: Optional[str],
        last_name: Optional[str],
        warning: str,
    ) -> SignupOutcome:
        identity = self._provision(email, first_name=first_name, last_name=last_name)
        return SignupOutcome(
            user=UserPayload.from_identity(identity),
            message="Temporary account created - database setup pending",
            degraded=True,
            warning=warning,
            identity=identity,
        )

    async def register(
        self,
        email: str,
        password: str,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        learning_style: Optional[Dict[str, float]] = None,
        skill_level: Optional[Dict[str, str]] = None,
    ) -> SignupOutcome:
        """Create a durable account, or a temporary identity if the store is degraded.

        Raises :class:`DuplicateAccountError` when the email is taken.
        """

        email = email.strip().lower()
        status = await self.guarded.gate.check()
        if not status.healthy:
            logger.warning("Store unhealthy before signup; provisioning temporary identity")
            return self._temporary(email, first_name, last_name, STORE_UNAVAILABLE_WARNING)

        # A failed lookup is treated as "not registered"; the unique index on
        # email still rejects duplicates at insert time.
        existing = await self.guarded.read(
            self.store.get_user_by_email, email, fallback=None, check_health=False
        )
        if existing.value:
            raise DuplicateAccountError(email)

        defaults = ProfileDefaults()
        profile = defaults.model_dump()
        if learning_style:
            profile["learning_style"] = dict(learning_style)
        if skill_level:
            profile["skill_level"] = dict(skill_level)

        user_id = f"user_{uuid4().hex}"
        display_name = f"{first_name or ''} {last_name or ''}".strip() or DEFAULT_DISPLAY_NAME
        pw_hash, pw_salt = await asyncio.to_thread(self._hasher, password)
        try:
            created = await self.guarded.write(
                self.store.create_user,
                user_id,
                email,
                pw_hash,
                pw_salt,
                display_name,
                first_name,
                last_name,
                profile,
                name="create_user",
                check_health=False,
            )
        except ConstraintViolation:
            record = await self._created_by_abandoned_attempt(email, user_id)
            if record is not None:
                return self._created(record)
            raise DuplicateAccountError(email) from None
        except StoreError as exc:
            logger.warning("Durable signup failed (%s); provisioning temporary identity", exc.kind.value)
            return self._temporary(email, first_name, last_name, STORE_UNAVAILABLE_WARNING)

        return self._created(created.value)

    async def _created_by_abandoned_attempt(self, email: str, user_id: str) -> Optional[Dict[str, Any]]:
        # A timed-out insert may have committed before a retry hit the unique index.
        try:
            outcome = await self.guarded.read(
                self.store.get_user_by_email, email, fallback=None, check_health=False
            )
        except StoreError:
            return None
        record = outcome.value
        if record and record.get("id") == user_id:
            return record
        return None

    def _created(self, record: Dict[str, Any]) -> SignupOutcome:
        self.profile_cache.add(str(record["id"]), record)
        logger.info("Created account %s", record["id"])
        return SignupOutcome(user=UserPayload.from_record(record), message="Account created")

    async def get_profile(self, user_id: str) -> ProfileOutcome:
        """Return the profile for ``user_id``, degrading to cached or default data.

        Raises :class:`AccountNotFoundError` when the store reports no such user.
        """

        if is_temporary_id(user_id):
            return ProfileOutcome(
                user=UserPayload(id=user_id, display_name=DEFAULT_DISPLAY_NAME, is_temporary=True),
                profile=ProfileDefaults().model_dump(),
                degraded=True,
                warning=TEMPORARY_PROFILE_WARNING,
            )

        if mock_data.is_demo_user(user_id):
            record = mock_data.demo_user(user_id)
            return ProfileOutcome(
                user=UserPayload.from_record(record),
                profile=record["profile"],
                degraded=True,
                warning=DEMO_PROFILE_WARNING,
            )

        cached = self.profile_cache.get(user_id)
        try:
            outcome = await self.guarded.read(
                self.store.get_user,
                user_id,
                fallback=cached if cached is not None else MISSING,
            )
        except StoreError as exc:
            if exc.kind.terminal:
                raise AccountNotFoundError(user_id) from exc
            # Neither the store nor the cache could answer.
            return ProfileOutcome(
                user=UserPayload(id=user_id, display_name=DEFAULT_DISPLAY_NAME, is_temporary=False),
                profile=ProfileDefaults().model_dump(),
                degraded=True,
                warning=DEFAULT_PROFILE_WARNING,
            )

        record = outcome.value
        if not outcome.degraded:
            self.profile_cache.add(user_id, record)
        return ProfileOutcome(
            user=UserPayload.from_record(record),
            profile=record.get("profile") or {},
            degraded=outcome.degraded,
            warning=CACHED_PROFILE_WARNING if outcome.degraded else None,
        )

    async def update_profile(
        self,
        user_id: str,
        *,
        first_name: str,
        last_name: str,
        learning_style: Optional[Dict[str, float]] = None,
        skill_level: Optional[Dict[str, str]] = None,
        emotion_baseline: Optional[Dict[str, float]] = None,
        preferences: Optional[Dict[str, Any]] = None,
    ) -> ProfileUpdateOutcome:
        """Persist name and profile changes, acknowledging unsaved changes when degraded.

        Only the profile sections given are replaced. Raises
        :class:`AccountNotFoundError` when the store reports no such user.
        """

        changes: Dict[str, Any] = {
            key: dict(value)
            for key, value in (
                ("learning_style", learning_style),
                ("skill_level", skill_level),
                ("emotion_baseline", emotion_baseline),
                ("preferences", preferences),
            )
            if value is not None
        }

        if is_temporary_id(user_id):
            base = {"id": user_id, "profile": ProfileDefaults().model_dump()}
            return self._unsaved(base, first_name, last_name, changes, TEMPORARY_PROFILE_WARNING, temporary=True)

        if mock_data.is_demo_user(user_id):
            return self._unsaved(
                mock_data.demo_user(user_id), first_name, last_name, changes, DEMO_PROFILE_NOT_SAVED_WARNING
            )

        try:
            outcome = await self.guarded.write(
                self.store.update_user_profile,
                user_id,
                changes,
                first_name,
                last_name,
                fallback=None,
                name="update_user_profile",
            )
        except NotFound as exc:
            raise AccountNotFoundError(user_id) from exc

        if outcome.degraded:
            cached = self.profile_cache.get(user_id)
            base = cached if cached is not None else {"id": user_id, "profile": ProfileDefaults().model_dump()}
            return self._unsaved(base, first_name, last_name, changes, PROFILE_NOT_SAVED_WARNING)

        record = outcome.value
        self.profile_cache.add(user_id, record)
        logger.info("Updated profile for %s", user_id)
        return ProfileUpdateOutcome(user=UserPayload.from_record(record), profile=record.get("profile") or {})

    def _unsaved(
        self,
        base: Dict[str, Any],
        first_name: str,
        last_name: str,
        changes: Dict[str, Any],
        warning: str,
        *,
        temporary: bool = False,
    ) -> ProfileUpdateOutcome:
        # Echo the requested state back without writing it anywhere.
        record = {
            **base,
            "first_name": first_name,
            "last_name": last_name,
            "display_name": f"{first_name} {last_name}".strip() or DEFAULT_DISPLAY_NAME,
        }
        user = UserPayload.from_record(record).model_copy(update={"is_temporary": temporary})
        return ProfileUpdateOutcome(
            user=user,
            profile={**(base.get("profile") or {}), **changes},
            persisted=False,
            degraded=True,
            warning=warning,
        )
