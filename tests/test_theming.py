"""Tests for custom property resolution."""

import logging

import pytest
from lxml import etree

from theming import ColorResolver, load_custom_properties, load_declarations, parse_var, render_theme
from utils import UnresolvedColorsError

MARKUP = """<svg xmlns="http://www.w3.org/2000/svg">
  <svg id="a"><rect fill="var(--red)" stroke="var(--line, #000)" opacity="var(--red)"/></svg>
  <svg id="b"><circle fill="#abc"/></svg>
</svg>"""


class TestParseVar:
    def test_plain(self):
        assert parse_var("var(--red)") == ("--red", None)

    def test_fallback(self):
        assert parse_var("var(--red, #f00)") == ("--red", "#f00")

    def test_nested_fallback_kept_whole(self):
        assert parse_var("var(--a, var(--b, red))") == ("--a", "var(--b, red)")

    @pytest.mark.parametrize(
        "value",
        ["var( --red )", " var(--red) ", "var(--red,red)", "var(--red ,  red )"],
    )
    def test_whitespace_variants(self, value):
        assert parse_var(value)[0] == "--red"

    @pytest.mark.parametrize("value", ["#fff", "red", "url(#grad)", "none", "var(red)", ""])
    def test_not_a_reference(self, value):
        assert parse_var(value) is None


class TestColorResolver:
    def test_literal_unchanged(self):
        resolver = ColorResolver({"--red": "#f00"})
        assert resolver.resolve("#123456") == "#123456"
        assert resolver.unresolved == []

    def test_found(self):
        resolver = ColorResolver({"--red": "#f00"})
        assert resolver.resolve("var(--red, blue)") == "#f00"

    def test_found_value_not_resolved_again(self):
        resolver = ColorResolver({"--a": "var(--b)", "--b": "#000"})
        assert resolver.resolve("var(--a)") == "var(--b)"

    def test_fallback_chain_ends_at_literal(self, caplog):
        resolver = ColorResolver({})
        with caplog.at_level(logging.WARNING):
            assert resolver.resolve("var(--missing, var(--also-missing, red))") == "red"
        assert resolver.unresolved == []
        assert "--missing" in caplog.text
        assert "--also-missing" in caplog.text

    def test_missing_without_fallback(self):
        resolver = ColorResolver({})
        assert resolver.resolve("var(--missing)") == "var(--missing)"
        assert resolver.unresolved == ["--missing"]

    def test_empty_value_counts_as_missing(self):
        resolver = ColorResolver({"--red": ""})
        assert resolver.resolve("var(--red, blue)") == "blue"


class TestCustomProperties:
    def test_imports_in_order_then_variables(self, tmp_path):
        first = tmp_path / "first.css"
        first.write_text(":root { --a: #111; --b: #222; }\n/* --c: #999; */")
        second = tmp_path / "second.css"
        second.write_text(":root {\n  --b: #333;\n  --c: #444\n}\n.dark { color: red }")

        properties = load_custom_properties([first, second], {"--c": "#555"})

        assert properties["--a"] == "#111"
        assert properties["--b"] == "#333"
        assert properties["--c"] == "#555"

    def test_declarations_skip_comments(self, tmp_path):
        css = tmp_path / "vars.css"
        css.write_text("/* :root { --x: red; } */ :root { --y: blue; }")
        assert load_declarations(css) == {"--y": "blue"}

    def test_missing_import_is_fatal(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_custom_properties([tmp_path / "missing.css"])


class TestRenderTheme:
    def test_resolves_fill_and_stroke_only(self):
        root = etree.fromstring(MARKUP)
        rendered = render_theme(root, {"--red": "#f00"}, "light")
        rect = rendered.xpath("//*[local-name()='rect']")[0]
        assert rect.get("fill") == "#f00"
        assert rect.get("stroke") == "#000"
        assert rect.get("opacity") == "var(--red)"

    def test_returns_new_tree(self):
        root = etree.fromstring(MARKUP)
        render_theme(root, {"--red": "#f00"})
        assert root.xpath("//*[local-name()='rect']")[0].get("fill") == "var(--red)"

    def test_reports_every_unresolved_property(self):
        root = etree.fromstring(
            '<svg xmlns="http://www.w3.org/2000/svg">'
            '<rect fill="var(--one)" stroke="var(--two)"/><path fill="var(--one)"/></svg>'
        )
        with pytest.raises(UnresolvedColorsError) as exc_info:
            render_theme(root, {}, "dark")
        assert exc_info.value.names == ["--one", "--two"]
        assert exc_info.value.theme == "dark"
        assert "--one, --two" in str(exc_info.value)
