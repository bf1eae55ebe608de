from __future__ import annotations


class AppForgeError(Exception):
    """Base error for AppForge."""


class AppLinkNotFoundError(AppForgeError):
    """No app link matches the requested id or owner/project/slug."""


class BuildJobNotFoundError(AppForgeError):
    """No build job matches the CI build id."""


class AppRequestNotFoundError(AppForgeError):
    """No app request matches the requested id."""


class InvalidBuildRequestError(AppForgeError):
    """Malformed platform, override or request payload."""


class ForbiddenError(AppForgeError):
    """Authenticated caller does not own the target resource."""


class ActiveBuildConflictError(AppForgeError):
    """A non-terminal build already exists for the app and platform."""


class AppRequestStateError(AppForgeError):
    """App request is no longer pending."""


class CiConfigError(AppForgeError):
    """CI dispatch configuration missing required fields."""


class CiDispatchError(AppForgeError):
    """The CI system rejected or could not receive a build trigger."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        # Keep the upstream status so retry policies can classify 5xx responses.
        self.status_code = status_code


class ManifestFetchError(AppForgeError):
    """Published build manifest could not be fetched or parsed."""


class IntegrationUnavailableError(AppForgeError):
    """External integration is unavailable due to circuit breaker state."""
