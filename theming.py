"""Resolve CSS custom properties used as fill/stroke colours in SVG markup."""

import copy
import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from lxml import etree

from utils import UnresolvedColorsError

VAR_RE = re.compile(r"^\s*var\(\s*(--[^\s(),]+)\s*(?:,\s*(.*?))?\s*\)\s*$", re.DOTALL)
COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
BLOCK_RE = re.compile(r"\{([^{}]*)\}")

COLOR_ATTRIBUTES = ("fill", "stroke")


def parse_var(value: str) -> Optional[Tuple[str, Optional[str]]]:
    """Split `var(--name, fallback)` into `("--name", "fallback")`.

    The fallback is returned verbatim and may itself be a `var()` expression.
    Returns None when `value` is not a `var()` reference.
    """
    m = VAR_RE.match(value)
    if not m:
        return None
    fallback = m.group(2)
    if fallback is not None:
        fallback = fallback.strip() or None
    return m.group(1), fallback


def load_declarations(path: Path) -> Dict[str, str]:
    css = COMMENT_RE.sub("", Path(path).read_text(encoding="utf-8"))
    declarations = {}
    for block in BLOCK_RE.findall(css):
        for part in block.split(";"):
            prop, sep, value = part.partition(":")
            if sep and prop.strip() and value.strip():
                declarations[prop.strip()] = value.strip()
    return declarations


def load_custom_properties(
    import_from: Iterable[Path] = (), variables: Optional[Mapping[str, str]] = None
) -> Dict[str, str]:
    """Build a theme's property table: imports in order, then `variables` on top."""
    properties: Dict[str, str] = {}
    for path in import_from:
        properties.update(load_declarations(path))
    properties.update(variables or {})
    return properties


class ColorResolver:
    def __init__(self, properties: Mapping[str, str]):
        self.properties = properties
        self.unresolved: List[str] = []

    def resolve(self, value: str) -> str:
        parsed = parse_var(value)
        if parsed is None:
            return value

        name, fallback = parsed
        color = self.properties.get(name)
        if color:
            return color

        if fallback is not None:
            logging.warning(f"There is no value for '{name}', using fallback '{fallback}'")
            return self.resolve(fallback)

        # Collected so that every missing colour is reported at once
        if name not in self.unresolved:
            self.unresolved.append(name)
        return value


def render_theme(root: etree._Element, properties: Mapping[str, str], theme: str = "") -> etree._Element:
    """Return a copy of `root` with custom properties in fill/stroke replaced."""
    root = copy.deepcopy(root)
    resolver = ColorResolver(properties)

    for elem in root.iter():
        if not isinstance(elem.tag, str):
            continue
        for attr in COLOR_ATTRIBUTES:
            value = elem.get(attr)
            if value is not None:
                elem.set(attr, resolver.resolve(value))

    if resolver.unresolved:
        raise UnresolvedColorsError(theme, resolver.unresolved)

    return root
