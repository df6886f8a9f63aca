"""Error taxonomy shared by the sync engine.

Duplicates and unsupported activity types are not errors; they are reported
through ``SyncOutcome`` counters instead.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync engine failures."""

    code = "sync_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotConnected(SyncError):
    """The user has no stored Strava connection."""

    code = "not_connected"

    def __init__(self, user_id: int) -> None:
        super().__init__(f"User {user_id} has no Strava connection")
        self.user_id = user_id


class CredentialRefreshFailed(SyncError):
    """Refreshing the access token failed.

    ``reconnect_required`` is set when the provider rejected the refresh token,
    meaning the owner has to authorize the integration again.
    """

    code = "credential_refresh_failed"

    def __init__(self, message: str, *, reconnect_required: bool = False) -> None:
        super().__init__(message)
        self.reconnect_required = reconnect_required


class ProviderError(SyncError):
    """Base class for errors returned by the Strava HTTP client."""

    code = "provider_error"

    def __init__(self, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    code = "provider_auth_error"

    def __init__(self, message: str = "Strava rejected the access token") -> None:
        super().__init__(message, status_code=401)


class RateLimited(ProviderError):
    code = "rate_limited"

    def __init__(self, message: str = "Strava rate limited", retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class TransientNetworkError(ProviderError):
    code = "transient_network_error"

    def __init__(self, message: str = "Strava request failed at the transport layer") -> None:
        super().__init__(message, status_code=504)


class ProviderAPIError(ProviderError):
    code = "provider_error"


class DuplicateActivity(Exception):
    """The (owner_id, external_id) pair is already stored.

    Raised by the persistence layer and counted as a skip by callers.
    """
