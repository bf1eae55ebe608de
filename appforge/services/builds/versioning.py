from __future__ import annotations


INITIAL_VERSION_NAME = "1.0.0"


def next_version_name(current: str | None) -> str:
    """Increment the last dotted component of a version name.

    ``None``/blank starts at ``1.0.0``; an unparseable patch component also
    falls back to ``1.0.0`` rather than failing the rebuild.
    """
    if current is None or not current.strip():
        return INITIAL_VERSION_NAME
    parts = current.strip().split(".")
    try:
        patch = int(parts[-1])
    except ValueError:
        return INITIAL_VERSION_NAME
    if patch < 0:
        return INITIAL_VERSION_NAME
    parts[-1] = str(patch + 1)
    return ".".join(parts)


def android_package_name(prefix: str, link_id: int) -> str:
    # Derive the package once from the link id; callers never regenerate an existing one.
    return f"{prefix}{link_id}"


def ios_bundle_id(prefix: str, link_id: int) -> str:
    return f"{prefix}{link_id}.app"
