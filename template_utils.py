"""Slide template catalog with contrast checks and random sampling."""
from __future__ import annotations

import random
import re
from typing import List, Optional, Sequence, Tuple

try:
    from .models import Template
except Exception:
    from models import Template

HEX_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
MIN_READABLE_CONTRAST = 4.5

TEMPLATES: Tuple[Template, ...] = (
    Template(
        name="Professional Blue",
        theme="default",
        background_color="#ffffff",
        text_color="#2c3e50",
        accent_color="#3498db",
        heading_font="Arial, sans-serif",
        body_font="Helvetica, sans-serif",
    ),
    Template(
        name="Dark Tech",
        theme="gaia",
        background_color="#1a1a2e",
        text_color="#e6e6e6",
        accent_color="#0f3460",
        heading_font="Courier New, monospace",
        body_font="Courier New, monospace",
    ),
    Template(
        name="Warm Sunset",
        theme="uncover",
        background_color="#fff5e6",
        text_color="#5c3a21",
        accent_color="#e67e22",
        heading_font="Georgia, serif",
        body_font="Palatino, serif",
    ),
    Template(
        name="Clean Green",
        theme="default",
        background_color="#f0fff0",
        text_color="#1e3f1e",
        accent_color="#2e8b57",
        heading_font="Verdana, sans-serif",
        body_font="Arial, sans-serif",
    ),
    Template(
        name="Bold Contrast",
        theme="gaia",
        background_color="#000000",
        text_color="#ffffff",
        accent_color="#ff5722",
        heading_font="Impact, sans-serif",
        body_font="Arial Black, sans-serif",
    ),
    Template(
        name="Soft Pastel",
        theme="uncover",
        background_color="#f8f4ff",
        text_color="#4a4453",
        accent_color="#b399d4",
        heading_font="Comic Sans MS, cursive",
        body_font="Comic Sans MS, cursive",
    ),
    Template(
        name="Ocean Depth",
        theme="default",
        background_color="#e6f7ff",
        text_color="#003366",
        accent_color="#0066cc",
        heading_font="Trebuchet MS, sans-serif",
        body_font="Tahoma, sans-serif",
    ),
)


def hex_to_rgb(color: str) -> Tuple[int, int, int]:
    """Function hex to rgb.

    Args:
        color (str): ``#rrggbb`` or ``#rgb``.

    Returns:
        Tuple[int, int, int]:
    """
    m = HEX_RE.match((color or "").strip())
    if not m:
        raise ValueError(f"Not a hex color: {color!r}")
    digits = m.group(1)
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)


def _linear(channel: int) -> float:
    c = channel / 255
    return c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4


def relative_luminance(color: str) -> float:
    r, g, b = hex_to_rgb(color)
    return 0.2126 * _linear(r) + 0.7152 * _linear(g) + 0.0722 * _linear(b)


def contrast_ratio(color_a: str, color_b: str) -> float:
    """WCAG contrast ratio between two colors, from 1.0 to 21.0.

    Args:
        color_a (str):
        color_b (str):

    Returns:
        float:
    """
    la = relative_luminance(color_a)
    lb = relative_luminance(color_b)
    lighter, darker = max(la, lb), min(la, lb)
    return (lighter + 0.05) / (darker + 0.05)


def get_contrast_color(bg_color: str) -> str:
    """Black or white, whichever reads better on ``bg_color``.

    Args:
        bg_color (str):

    Returns:
        str:
    """
    r, g, b = hex_to_rgb(bg_color)
    brightness = (r * 299 + g * 587 + b * 114) / 1000
    return "#000000" if brightness > 128 else "#ffffff"


class TemplateRegistry:
    def __init__(self, templates: Sequence[Template] = TEMPLATES, rng: Optional[random.Random] = None) -> None:
        self._templates: Tuple[Template, ...] = tuple(templates)
        self._rng = rng or random.Random()

    def __len__(self) -> int:
        return len(self._templates)

    def all_templates(self) -> List[Template]:
        return list(self._templates)

    def readable_templates(self, min_ratio: float = MIN_READABLE_CONTRAST) -> List[Template]:
        return [
            t for t in self._templates
            if contrast_ratio(t.background_color, t.text_color) >= min_ratio
        ]

    def random_sample(self, count: int) -> List[Template]:
        """Sample templates without replacement.

        Args:
            count (int):

        Returns:
            List[Template]: empty for ``count <= 0``; every template once when
            ``count`` reaches the registry size.
        """
        if count <= 0:
            return []
        if count >= len(self._templates):
            return list(self._templates)
        return self._rng.sample(list(self._templates), count)

    def get(self, name: str) -> Template:
        key = (name or "").strip().lower()
        for t in self._templates:
            if t.name.lower() == key:
                return t
        raise KeyError(f"Unknown template: {name!r}")
