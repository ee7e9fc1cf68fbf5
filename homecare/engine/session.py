"""
Session Store - the signed-in user.

Login goes through the network client like any other resource ('sessions').
A rejected login fails. When the server cannot be reached the store opens an
offline session built from seed data, so the app remains usable; it is
marked degraded and carries no token.
"""

import dataclasses
import json
import logging
from typing import Callable, Dict, Optional

from homecare.bus.events import EventBus, EVENT_SESSION_STARTED, EVENT_SESSION_ENDED, EVENT_SYNC_FAILED
from homecare.engine.store import MutationResult
from homecare.models import (
    User, LOAD_IDLE, LOAD_LOADING, LOAD_READY, LOAD_DEGRADED,
    STATUS_FAILED, STATUS_SYNCED, from_payload, to_payload,
)
from homecare.net.dispatch import Dispatcher
from homecare.net.errors import DecodeFailure, ServerRejected, SyncError

logger = logging.getLogger(__name__)

TOKEN_KEY = 'authToken'
USER_KEY = 'user'


class MemoryVault:
    """In-memory stand-in for the platform's secure credential storage."""

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def delete(self, key: str) -> None:
        self._items.pop(key, None)


class SessionStore:

    resource_type = 'sessions'

    def __init__(self, client, dispatcher: Dispatcher, vault, seed_user: Callable[[], User],
                 bus: Optional[EventBus] = None):
        self.client = client
        self.dispatcher = dispatcher
        self.vault = vault
        self.seed_user = seed_user
        self.bus = bus if bus is not None else EventBus()
        self.user: Optional[User] = None
        self.load_state = LOAD_IDLE
        self.error: Optional[BaseException] = None
        self._attempt = 0

    @property
    def is_loading(self) -> bool:
        return self.load_state == LOAD_LOADING

    def is_authenticated(self) -> bool:
        return bool(self.vault.get(TOKEN_KEY))

    def restore(self) -> Optional[User]:
        """Pick up the user saved by a previous login, if any."""
        raw = self.vault.get(USER_KEY)
        if not raw:
            return None
        try:
            self.user = from_payload(User, json.loads(raw))
        except (ValueError, DecodeFailure) as e:
            logger.error(f"Failed to load user from storage: {e}")
            self.vault.delete(USER_KEY)
            return None
        self.load_state = LOAD_READY if self.is_authenticated() else LOAD_DEGRADED
        return self.user

    def login(self, email: str, password: str) -> MutationResult:
        """Start a login. The result resolves when the server answers."""
        email = (email or '').strip()
        if not email or not password:
            return MutationResult('login', None, status=STATUS_FAILED,
                                  error=ValueError('Email and password are required'))

        self._attempt += 1
        attempt = self._attempt
        self.load_state = LOAD_LOADING
        result = MutationResult('login', None)
        result.job = self.dispatcher.submit(
            self.client.create, self.resource_type, {'email': email, 'password': password},
            on_success=lambda data: self._on_login(attempt, result, data),
            on_failure=lambda exc: self._on_login_failed(attempt, result, email, exc),
            description='login',
        )
        return result

    def _on_login(self, attempt: int, result: MutationResult, data) -> None:
        if attempt != self._attempt:
            return
        try:
            if not isinstance(data, dict) or not data.get('token'):
                raise DecodeFailure('Login response has no token')
            user = from_payload(User, data.get('user'))
        except DecodeFailure as e:
            self._on_login_failed(attempt, result, None, e)
            return

        self.vault.set(TOKEN_KEY, data['token'])
        self._start(user, LOAD_READY)
        result.record_id, result.record, result.status = user.id, user, STATUS_SYNCED

    def _on_login_failed(self, attempt: int, result: MutationResult, email: Optional[str], exc) -> None:
        if attempt != self._attempt:
            return
        self.error = exc
        offline = email and isinstance(exc, SyncError) and not isinstance(exc, (ServerRejected, DecodeFailure))
        if offline:
            logger.warning(f"Login server unreachable ({exc.kind}); starting offline session")
            user = dataclasses.replace(self.seed_user(), email=email)
            self._start(user, LOAD_DEGRADED)
            result.record_id, result.record = user.id, user
            return

        logger.error(f"Login error: {exc}")
        self.user = None
        self.load_state = LOAD_IDLE
        result.status, result.error = STATUS_FAILED, exc
        kind = getattr(exc, 'kind', type(exc).__name__)
        self.bus.emit(EVENT_SYNC_FAILED, {'resource_type': self.resource_type, 'op': 'login',
                                          'kind': kind, 'message': getattr(exc, 'user_message', str(exc))})

    def _start(self, user: User, state: str) -> None:
        self.user = user
        self.load_state = state
        self.vault.set(USER_KEY, json.dumps(to_payload(user)))
        self.bus.emit(EVENT_SESSION_STARTED, {'user_id': user.id, 'offline': state == LOAD_DEGRADED})

    def logout(self) -> None:
        """Forget the user locally. Server-side invalidation is best effort."""
        had_token = self.is_authenticated()
        self._attempt += 1
        self.vault.delete(TOKEN_KEY)
        self.vault.delete(USER_KEY)
        self.user = None
        self.load_state = LOAD_IDLE
        self.error = None
        self.bus.emit(EVENT_SESSION_ENDED, {})
        if had_token:
            self.dispatcher.submit(
                self.client.remove, self.resource_type, 'current',
                on_failure=lambda exc: logger.warning(f"Logout not confirmed by server: {exc}"),
                description='logout',
            )
