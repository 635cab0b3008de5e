"""Wiring of the services behind the HTTP API and the CLI."""

from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from user_onboard import database
from user_onboard.config import Settings
from user_onboard.services.audit_trail import AuditTrail
from user_onboard.services.auth_orchestrator import AuthOrchestrator
from user_onboard.services.event_bus import ALL_TOPICS, EventBus, log_event
from user_onboard.services.key_material import KeyMaterial
from user_onboard.services.onboarding import OnboardingStateMachine
from user_onboard.services.password_hasher import PasswordHasher
from user_onboard.services.revocation_store import RevocationStore
from user_onboard.services.token_service import TokenService
from user_onboard.services.user_directory import UserDirectory
from user_onboard.storage.memory import (
    MemoryAuditTrail,
    MemoryRevocationStore,
    MemoryStore,
    MemoryUserDirectory,
)

logger = structlog.get_logger(__name__)


@dataclass
class Runtime:
    """Everything a request handler needs, built once per process."""

    settings: Settings
    keys: KeyMaterial
    tokens: TokenService
    users: object
    audit: object
    revocations: object
    events: EventBus
    onboarding: OnboardingStateMachine
    auth: AuthOrchestrator
    memory_store: Optional[MemoryStore] = None

    @property
    def uses_memory_store(self) -> bool:
        return self.memory_store is not None

    async def health_check(self) -> bool:
        if self.memory_store is not None:
            return await self.memory_store.health_check()
        return await database.health_check()


def build_runtime(
    settings: Settings,
    keys: Optional[KeyMaterial] = None,
    redis_client=None,
    hasher: Optional[PasswordHasher] = None,
) -> Runtime:
    """Assemble services for the configured backend.

    Args:
        settings: Application settings
        keys: Pre-built key pair; loaded from the configured paths if omitted
        redis_client: Connected Redis client for event fan-out, if any
        hasher: Password hasher override (tests use fewer bcrypt rounds)

    Returns:
        Runtime with all services wired

    Raises:
        OnboardError: CONFIGURATION if the key pair cannot be loaded
    """
    keys = keys or KeyMaterial.from_settings(settings)
    hasher = hasher or PasswordHasher()

    memory_store = None
    transaction: Callable
    if settings.use_memory_store:
        memory_store = MemoryStore()
        users = MemoryUserDirectory(memory_store, hasher)
        audit = MemoryAuditTrail(memory_store)
        revocations = MemoryRevocationStore(memory_store)
        transaction = memory_store.transaction
    else:
        users = UserDirectory(hasher)
        audit = AuditTrail()
        revocations = RevocationStore()
        transaction = database.transaction

    tokens = TokenService.from_settings(settings, keys=keys)

    events = EventBus(redis_client=redis_client, channel_prefix=settings.event_channel_prefix)
    events.subscribe(ALL_TOPICS, log_event)

    onboarding = OnboardingStateMachine(users, audit, events, transaction)
    auth = AuthOrchestrator(
        tokens,
        revocations,
        users,
        rotate_refresh_tokens=settings.refresh_token_rotation,
        revoked_retention=settings.revoked_token_retention,
    )

    logger.info(
        "runtime_built",
        backend="memory" if memory_store is not None else "postgres",
        redis_events=redis_client is not None,
        refresh_rotation=settings.refresh_token_rotation,
    )

    return Runtime(
        settings=settings,
        keys=keys,
        tokens=tokens,
        users=users,
        audit=audit,
        revocations=revocations,
        events=events,
        onboarding=onboarding,
        auth=auth,
        memory_store=memory_store,
    )
