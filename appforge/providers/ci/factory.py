from __future__ import annotations

from appforge.core.config import get_settings
from appforge.core.errors import CiConfigError
from appforge.providers.ci.base import CiProvider
from appforge.providers.ci.fake import FakeCiProvider
from appforge.providers.ci.github_dispatch import GitHubDispatchProvider


def get_ci_provider() -> CiProvider:
    settings = get_settings()
    provider = (settings.ci_provider or "github").lower()

    if provider == "fake":
        return FakeCiProvider()
    if provider == "github":
        return GitHubDispatchProvider()

    raise CiConfigError(f"Unsupported CI provider: {provider}")
