from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


_DEFAULT_PRIMARY = "#16A34A"
_DEFAULT_BACKGROUND = "#FFFFFF"
_DEFAULT_ON_BACKGROUND = "#111827"
_DEFAULT_ERROR = "#DC2626"


@dataclass(frozen=True)
class ThemePalette:
    primary: str | None = None
    secondary: str | None = None
    background: str | None = None
    on_background: str | None = None
    error: str | None = None
    menu_type: str | None = None


def _pick(value: str | None, default: str) -> str:
    return value.strip() if value and value.strip() else default


def resolve_menu_type(raw: str | None) -> str:
    # Mobile shell only knows two layouts.
    if raw is None or not raw.strip():
        return "bottom"
    if raw.strip().lower() in {"drawer", "hamburger"}:
        return "hamburger"
    return "bottom"


def menu_type_from_branding(branding_json: str | None) -> str | None:
    if branding_json is None or not branding_json.strip():
        return None
    try:
        branding = json.loads(branding_json)
    except ValueError:
        return None
    if not isinstance(branding, dict):
        return None
    value = branding.get("menuType")
    if value is None or not str(value).strip():
        return None
    return str(value)


def build_theme_json(palette: ThemePalette) -> str:
    """Render a complete mobile theme document from a handful of owner colors."""
    primary = _pick(palette.primary, _DEFAULT_PRIMARY)
    error = _pick(palette.error, _DEFAULT_ERROR)
    colors: dict[str, Any] = {
        "primary": primary,
        "onPrimary": "#FFFFFF",
        "secondary": _pick(palette.secondary, primary),
        "background": _pick(palette.background, _DEFAULT_BACKGROUND),
        "surface": "#FFFFFF",
        "label": _pick(palette.on_background, _DEFAULT_ON_BACKGROUND),
        "body": "#374151",
        "border": primary,
        "error": error,
        "danger": error,
        "muted": "#9CA3AF",
        "success": primary,
    }
    tokens: dict[str, Any] = {
        "card": {
            "radius": 16,
            "elevation": 4,
            "padding": 12,
            "imageHeight": 120,
            "showShadow": True,
            "showBorder": True,
        },
        "search": {"radius": 16, "borderWidth": 1.4, "dense": True},
        "button": {"radius": 16, "height": 48, "textSize": 15, "fullWidth": True},
    }
    document = {
        "menuType": resolve_menu_type(palette.menu_type),
        "valuesMobile": {"colors": colors, **tokens},
    }
    return json.dumps(document, separators=(",", ":"))
