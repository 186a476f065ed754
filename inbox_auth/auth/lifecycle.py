"""Credential lifecycle: load, migrate, refresh, persist and log out.

:class:`TokenLifecycleManager` owns the single in-memory
:class:`ActiveSession`. Downstream API wrappers only ever call
:meth:`TokenLifecycleManager.get_access_token`, which guarantees the
returned bearer token is not within :data:`REFRESH_BUFFER` of expiry.

The session slot is guarded by one ``asyncio.Lock`` that is held across
the whole check-refresh-persist-update sequence, so concurrent callers
share a single refresh request instead of each issuing their own.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from google.oauth2.credentials import Credentials

from inbox_auth.auth.exchange import TokenExchanger
from inbox_auth.auth.models import (
    ActiveSession,
    AuthStatus,
    LegacySession,
    SessionMetadata,
)
from inbox_auth.auth.storage import SessionMetadataStore
from inbox_auth.auth.vault import SecretVault
from inbox_auth.utils.errors import (
    ConfigurationError,
    InboxAuthError,
    StateError,
    StorageError,
)

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    """Owns the active session and its durable state.

    Durable state is split in two: the refresh token goes to the
    :class:`SecretVault` keyed by account email, everything else to the
    plaintext :class:`SessionMetadataStore`. The access token is kept in
    memory only.

    Example:
        >>> manager = TokenLifecycleManager(SecretVault())
        >>> await manager.initialize(app_dir, client_id, client_secret)
        >>> token = await manager.get_access_token()
    """

    def __init__(
        self, vault: SecretVault, exchanger: TokenExchanger | None = None
    ) -> None:
        """Initialize the manager.

        Args:
            vault: Secret vault holding refresh tokens.
            exchanger: Token endpoint client. When omitted, one is built
                from the credentials passed to :meth:`initialize`.
        """
        self._vault = vault
        self._exchanger = exchanger
        self._store: SessionMetadataStore | None = None
        self._session: ActiveSession | None = None
        self._lock = asyncio.Lock()

    @property
    def store(self) -> SessionMetadataStore:
        if self._store is None:
            raise StateError("Token lifecycle manager is not initialized")
        return self._store

    @property
    def exchanger(self) -> TokenExchanger:
        if self._exchanger is None:
            raise StateError("Token lifecycle manager is not initialized")
        return self._exchanger

    async def initialize(
        self,
        app_dir: Path,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> AuthStatus:
        """Restore the previous session at startup.

        Migrates a legacy combined token file if one exists, loads the
        metadata record and the matching vault entry, and refreshes right
        away if the stored expiry has passed or is within the buffer.
        Refresh failures sign the user out instead of raising.

        Args:
            app_dir: Application-private data directory.
            client_id: OAuth client ID (needed if no exchanger was given).
            client_secret: OAuth client secret (same).

        Returns:
            The resulting authentication status.

        Raises:
            ConfigurationError: If no exchanger was given and the client
                credentials are missing.
            StorageError: If the data directory cannot be created.
        """
        if self._exchanger is None:
            if not client_id or not client_secret:
                raise ConfigurationError(
                    "OAuth not configured",
                    details={
                        "hint": "Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET "
                        "environment variables"
                    },
                )
            self._exchanger = TokenExchanger(client_id, client_secret)

        self._store = SessionMetadataStore(app_dir)

        async with self._lock:
            self._migrate_legacy()
            session = self._load_session()

            if session is not None and session.is_expiring():
                logger.info("Stored session for %s has expired", session.email)
                try:
                    session = await self._refresh_locked(session)
                except InboxAuthError as e:
                    logger.warning("Startup token refresh failed, signing out: %s", e)
                    self._clear_durable_state(session.email)
                    session = None

            self._session = session
            if session is None:
                logger.info("No stored session; user is signed out")
            else:
                logger.info("Restored session for %s", session.email)
            return self._status_locked()

    async def get_access_token(self) -> str:
        """Return a bearer token guaranteed not to be near expiry.

        Refreshes first when the cached token is missing, expired or
        within the refresh buffer. The lock is held for the whole
        sequence, so concurrent callers trigger at most one refresh.

        If the provider itself issues a token whose lifetime is shorter
        than the buffer, that token is returned as is (a warning is
        logged) and the next call refreshes again.

        Returns:
            A valid access token.

        Raises:
            StateError: If there is no active session.
            NetworkError: If the refresh request fails.
            ProtocolError: If the refresh response is malformed.
        """
        async with self._lock:
            session = self._session
            if session is None:
                raise StateError("Not authenticated")

            if session.needs_refresh():
                session = await self._refresh_locked(session)

            # needs_refresh() is False here, so the token is set
            assert session.access_token is not None
            return session.access_token

    async def get_credentials(self) -> Credentials:
        """Wrap a fresh bearer token for Google API client libraries."""
        token = await self.get_access_token()
        return Credentials(token=token)  # type: ignore[no-untyped-call]

    async def store_session(self, session: ActiveSession) -> None:
        """Persist a newly authorized session and make it active.

        Signing in as a different account removes the previous account's
        vault entry.

        Raises:
            StorageError: If the vault or metadata write fails; nothing is
                left half-written in that case.
            StateError: If called before :meth:`initialize`.
        """
        async with self._lock:
            store = self.store
            previous = self._session
            self._vault.store_refresh_token(session.email, session.refresh_token)
            try:
                store.save(SessionMetadata.from_session(session))
            except StorageError:
                self._restore_vault_entry(session.email, previous)
                raise

            if previous is not None and previous.email != session.email:
                try:
                    self._vault.delete_refresh_token(previous.email)
                except StorageError as e:
                    logger.warning(
                        "Could not remove refresh token for %s: %s", previous.email, e
                    )

            self._session = session
            logger.info("Session stored for %s", session.email)

    async def get_auth_status(self) -> AuthStatus:
        """Return the current authentication status."""
        async with self._lock:
            return self._status_locked()

    async def logout(self) -> None:
        """Sign out: revoke, then delete vault entry, metadata and session.

        Revocation with the provider is best-effort. Calling this with no
        active session is a no-op success.
        """
        async with self._lock:
            email: str | None = None
            refresh_token: str | None = None

            if self._session is not None:
                email = self._session.email
                refresh_token = self._session.refresh_token
            elif self._store is not None:
                # Durable state may survive a failed restore
                try:
                    metadata = self._store.load()
                    if metadata is not None:
                        email = metadata.email
                        refresh_token = self._vault.get_refresh_token(email)
                except StorageError as e:
                    logger.warning("Could not read stored session during logout: %s", e)

            if refresh_token and self._exchanger is not None:
                try:
                    await asyncio.to_thread(self._exchanger.revoke_token, refresh_token)
                except InboxAuthError as e:
                    logger.warning("Token revocation failed: %s", e)

            if email is not None:
                self._clear_durable_state(email)
            elif self._store is not None:
                self._delete_metadata()

            self._session = None

            if email is not None:
                logger.info("User %s logged out", email)
            else:
                logger.debug("Logout called but no session was stored")

    # =========================================================================
    # Internals (call with the lock held)
    # =========================================================================

    async def _refresh_locked(self, session: ActiveSession) -> ActiveSession:
        tokens = await asyncio.to_thread(
            self.exchanger.exchange_refresh, session.refresh_token
        )

        refresh_token = session.refresh_token
        if tokens.refresh_token and tokens.refresh_token != refresh_token:
            self._vault.store_refresh_token(session.email, tokens.refresh_token)
            refresh_token = tokens.refresh_token

        refreshed = ActiveSession(
            access_token=tokens.access_token,
            refresh_token=refresh_token,
            expires_at=tokens.expires_at,
            user_info=session.user_info,
            scopes_granted=tokens.scopes or list(session.scopes_granted),
        )
        if refreshed.is_expiring():
            # Refreshing again cannot help; the provider chose the lifetime
            logger.warning(
                "Provider issued a token for %s that expires within the refresh "
                "buffer (at %s)",
                refreshed.email,
                refreshed.expires_at.isoformat(),
            )

        try:
            self.store.save(SessionMetadata.from_session(refreshed))
        except StorageError as e:
            # Expiry on disk is advisory; the new token is still usable
            logger.warning("Could not persist refreshed expiry: %s", e)

        self._session = refreshed
        logger.debug(
            "Access token for %s refreshed, expires at %s",
            refreshed.email,
            refreshed.expires_at.isoformat(),
        )
        return refreshed

    def _load_session(self) -> ActiveSession | None:
        try:
            metadata = self.store.load()
        except StorageError as e:
            logger.warning("Could not load session metadata: %s", e)
            return None

        if metadata is None:
            return None

        try:
            refresh_token = self._vault.get_refresh_token(metadata.email)
        except StorageError as e:
            logger.warning("Secret vault unavailable, staying signed out: %s", e)
            return None

        if refresh_token is None:
            logger.info(
                "No refresh token in vault for %s; discarding orphaned metadata",
                metadata.email,
            )
            self._delete_metadata()
            return None

        return ActiveSession(
            access_token=None,
            refresh_token=refresh_token,
            expires_at=metadata.expires_at,
            user_info=metadata.user_info,
            scopes_granted=list(metadata.scopes_granted),
        )

    def _migrate_legacy(self) -> None:
        store = self.store
        try:
            legacy = store.load_legacy()
        except StorageError as e:
            logger.warning("Legacy token file unreadable, will retry next start: %s", e)
            return

        if legacy is None:
            return

        if store.exists():
            # A previous migration got as far as the metadata write
            logger.info("Session metadata already present; removing legacy token file")
            self._delete_legacy()
            return

        try:
            if legacy.refresh_token:
                self._vault.store_refresh_token(
                    legacy.user_info.email, legacy.refresh_token
                )
                store.save(_metadata_from_legacy(legacy))
            store.delete_legacy()
        except StorageError as e:
            logger.warning("Legacy migration failed, will retry next start: %s", e)
            return

        logger.info("Migrated legacy token file for %s", legacy.user_info.email)

    def _clear_durable_state(self, email: str) -> None:
        try:
            self._vault.delete_refresh_token(email)
        except StorageError as e:
            logger.warning("Could not delete refresh token for %s: %s", email, e)
        self._delete_metadata()

    def _delete_metadata(self) -> None:
        try:
            self.store.delete()
        except StorageError as e:
            logger.warning("Could not delete session metadata: %s", e)

    def _delete_legacy(self) -> None:
        try:
            self.store.delete_legacy()
        except StorageError as e:
            logger.warning("Could not delete legacy token file: %s", e)

    def _restore_vault_entry(self, email: str, previous: ActiveSession | None) -> None:
        try:
            if previous is not None and previous.email == email:
                self._vault.store_refresh_token(email, previous.refresh_token)
            else:
                self._vault.delete_refresh_token(email)
        except StorageError as e:
            logger.error("Could not roll back vault entry for %s: %s", email, e)

    def _status_locked(self) -> AuthStatus:
        if self._session is None:
            return AuthStatus.logged_out()
        return AuthStatus(
            is_authenticated=True,
            user=self._session.user_info,
            expires_at=self._session.expires_at,
        )


def _metadata_from_legacy(legacy: LegacySession) -> SessionMetadata:
    return SessionMetadata(
        email=legacy.user_info.email,
        name=legacy.user_info.name,
        picture=legacy.user_info.picture,
        expires_at=legacy.expires_at,
        scopes_granted=list(legacy.scopes_granted),
    )


__all__ = ["TokenLifecycleManager"]
