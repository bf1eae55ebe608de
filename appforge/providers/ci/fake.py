from __future__ import annotations

from appforge.providers.ci.base import CiTrigger, CiTriggerResult


_recorded: list[CiTrigger] = []


class FakeCiProvider:
    def __init__(self, *, fail_with: Exception | None = None, ci_build_id: str | None = None) -> None:
        # Record triggers in-process so tests can assert on the payload without GitHub.
        self._fail_with = fail_with
        self._ci_build_id = ci_build_id

    async def trigger_build(self, trigger: CiTrigger) -> CiTriggerResult:
        if self._fail_with is not None:
            raise self._fail_with
        _recorded.append(trigger)
        return CiTriggerResult(ci_build_id=self._ci_build_id, status_code=204)


def recorded_triggers() -> list[CiTrigger]:
    return list(_recorded)


def reset_recorded_triggers() -> None:
    _recorded.clear()
