import random

import pytest

from models import Template
from template_utils import (
    TEMPLATES,
    TemplateRegistry,
    contrast_ratio,
    get_contrast_color,
    hex_to_rgb,
)


def _template(name, bg, fg):
    return Template(
        name=name,
        theme="default",
        background_color=bg,
        text_color=fg,
        accent_color="#888888",
        heading_font="Arial",
        body_font="Arial",
    )


class TestColors:
    def test_hex_to_rgb(self):
        assert hex_to_rgb("#ff8000") == (255, 128, 0)
        assert hex_to_rgb("fff") == (255, 255, 255)

    @pytest.mark.parametrize("bad", ["", "#ff", "zzzzzz", "#1234567"])
    def test_hex_to_rgb_rejects(self, bad):
        with pytest.raises(ValueError):
            hex_to_rgb(bad)

    def test_contrast_extremes(self):
        assert contrast_ratio("#000000", "#ffffff") == pytest.approx(21.0)
        assert contrast_ratio("#777777", "#777777") == pytest.approx(1.0)

    def test_contrast_is_symmetric(self):
        assert contrast_ratio("#2c3e50", "#ffffff") == pytest.approx(contrast_ratio("#ffffff", "#2c3e50"))

    def test_contrast_color(self):
        assert get_contrast_color("#ffffff") == "#000000"
        assert get_contrast_color("#1a1a2e") == "#ffffff"


class TestTemplateRegistry:
    """Catalog queries and random sampling."""

    def test_ships_catalog(self):
        reg = TemplateRegistry()
        assert len(reg) == len(TEMPLATES) == 7
        assert reg.all_templates()[0].name == "Professional Blue"

    def test_readable_templates_meet_threshold(self):
        reg = TemplateRegistry(
            [_template("ok", "#ffffff", "#000000"), _template("bad", "#ffffff", "#eeeeee")]
        )
        readable = reg.readable_templates()
        assert [t.name for t in readable] == ["ok"]
        for t in TemplateRegistry().readable_templates():
            assert contrast_ratio(t.background_color, t.text_color) >= 4.5

    def test_shipped_templates_are_readable(self):
        assert len(TemplateRegistry().readable_templates()) == 7

    @pytest.mark.parametrize("count", [1, 2, 3, 6])
    def test_sample_is_distinct_subset(self, count):
        reg = TemplateRegistry(rng=random.Random(7))
        sample = reg.random_sample(count)
        names = [t.name for t in sample]
        assert len(names) == count
        assert len(set(names)) == count
        assert set(names) <= {t.name for t in TEMPLATES}

    @pytest.mark.parametrize("count", [0, -3])
    def test_sample_non_positive(self, count):
        assert TemplateRegistry().random_sample(count) == []

    @pytest.mark.parametrize("count", [7, 50])
    def test_sample_at_or_above_size_returns_all(self, count):
        assert TemplateRegistry().random_sample(count) == list(TEMPLATES)

    def test_get_is_case_insensitive(self):
        assert TemplateRegistry().get("  dark tech ").name == "Dark Tech"

    def test_get_unknown(self):
        with pytest.raises(KeyError):
            TemplateRegistry().get("Neon")

    def test_templates_are_immutable(self):
        with pytest.raises(Exception):
            TEMPLATES[0].name = "Changed"
