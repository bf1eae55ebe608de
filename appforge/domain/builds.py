from __future__ import annotations

from typing import Literal


PLATFORM_ANDROID = "ANDROID"
PLATFORM_IOS = "IOS"
PLATFORMS: tuple[str, ...] = (PLATFORM_ANDROID, PLATFORM_IOS)

BUILD_STATUS_QUEUED = "QUEUED"
BUILD_STATUS_RUNNING = "RUNNING"
BUILD_STATUS_SUCCEEDED = "SUCCEEDED"
BUILD_STATUS_FAILED = "FAILED"

TERMINAL_STATUSES: frozenset[str] = frozenset({BUILD_STATUS_SUCCEEDED, BUILD_STATUS_FAILED})
ACTIVE_STATUSES: frozenset[str] = frozenset({BUILD_STATUS_QUEUED, BUILD_STATUS_RUNNING})

LINK_STATUS_ACTIVE = "ACTIVE"
LINK_STATUS_DELETED = "DELETED"
LINK_STATUS_EXPIRED = "EXPIRED"

DEFAULT_FAILURE_MESSAGE = "CI build failed"

BuildPlatform = Literal["ANDROID", "IOS"]
BuildStatus = Literal["QUEUED", "RUNNING", "SUCCEEDED", "FAILED"]

# Artifact columns a successful build may write, scoped by platform.
PLATFORM_ARTIFACT_FIELDS: dict[str, tuple[str, ...]] = {
    PLATFORM_ANDROID: ("apk_url", "bundle_url"),
    PLATFORM_IOS: ("ipa_url",),
}


def normalize_platform(platform: str) -> str:
    # Accept case-insensitive platform names but store the canonical enum value.
    normalized = (platform or "").strip().upper()
    if normalized not in PLATFORMS:
        raise ValueError(f"Invalid platform: {platform}. Use ANDROID or IOS")
    return normalized


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def transition_allowed(current: str, target: str) -> bool:
    # One-way build state machine; terminal states have no exits.
    allowed: dict[str, set[str]] = {
        BUILD_STATUS_QUEUED: {BUILD_STATUS_RUNNING, BUILD_STATUS_SUCCEEDED, BUILD_STATUS_FAILED},
        BUILD_STATUS_RUNNING: {BUILD_STATUS_SUCCEEDED, BUILD_STATUS_FAILED},
        BUILD_STATUS_SUCCEEDED: set(),
        BUILD_STATUS_FAILED: set(),
    }
    return target in allowed.get(current, set())


def source_statuses(target: str) -> tuple[str, ...]:
    """Return every status from which ``target`` may be entered."""
    return tuple(
        status
        for status in (BUILD_STATUS_QUEUED, BUILD_STATUS_RUNNING, BUILD_STATUS_SUCCEEDED, BUILD_STATUS_FAILED)
        if transition_allowed(status, target)
    )
