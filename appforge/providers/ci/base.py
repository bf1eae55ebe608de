from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class CiTrigger:
    # Everything the CI workflow needs to build one platform and report back.
    build_id: str
    platform: str
    event_type: str
    config: dict[str, Any]
    callback_base_url: str
    callback_token: str | None = None


@dataclass(frozen=True)
class CiTriggerResult:
    # CI may hand back its own run id; None means keep the dispatched build id.
    ci_build_id: str | None = None
    status_code: int | None = None
    details: dict[str, Any] = field(default_factory=dict)


class CiProvider(Protocol):
    async def trigger_build(self, trigger: CiTrigger) -> CiTriggerResult:
        ...


def build_dispatch_payload(trigger: CiTrigger) -> dict[str, Any]:
    # Keep client_payload to a few top-level keys; GitHub caps it at ten.
    return {
        "event_type": trigger.event_type,
        "client_payload": {
            "BUILD_ID": trigger.build_id,
            "PLATFORM": trigger.platform,
            "CONFIG": trigger.config,
            "CALLBACK": {
                "BASE_URL": trigger.callback_base_url,
                "TOKEN": trigger.callback_token or "",
            },
        },
    }
