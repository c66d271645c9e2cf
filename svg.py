import copy
import hashlib
import logging
import re
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from lxml import etree

from utils import PLACEHOLDER, CompiledSprite, PlaceholderError, SpriteGroup, format_scale

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"
NSMAP = {None: SVG_NS, "xlink": XLINK_NS}
KEPT_NAMESPACES = (SVG_NS, XLINK_NS)

SPRITE_TOKEN = "%sprite%"

TRANSLATE_RE = re.compile(r"^\s*translate\(\s*([^,\s]+)\s*[,\s]\s*([^)]+)\s*\)\s*$")
URL_REF_RE = re.compile(r"url\(\s*['\"]?#([^)'\"\s]+)['\"]?\s*\)")
LENGTH_RE = re.compile(r"^\s*([0-9.]+)\s*(px)?\s*$")


def parse_reference(value: str) -> Optional[str]:
    """Return the identifier referenced by `value`, or None.

    Understands `url(#id)` (optionally quoted, anywhere in the value, e.g.
    inside a style attribute) and a bare `#id` such as an href.
    """
    m = URL_REF_RE.search(value)
    if m:
        return m.group(1)
    value = value.strip()
    if value.startswith("#") and len(value) > 1:
        return value[1:]
    return None


def replace_references(value: str, mapping: Mapping[str, str]) -> str:
    """Re-point every reference in `value` whose target appears in `mapping`."""

    def _sub(m):
        target = mapping.get(m.group(1))
        if target is None:
            return m.group(0)
        return m.group(0)[: m.start(1) - m.start(0)] + target + m.group(0)[m.end(1) - m.start(0) :]

    if URL_REF_RE.search(value):
        return URL_REF_RE.sub(_sub, value)

    ref = parse_reference(value)
    if ref is not None and ref in mapping:
        return "#" + mapping[ref]
    return value


def _elements(node: etree._Element, include_self: bool = False):
    nodes = node.iter() if include_self else node.iterdescendants()
    return (e for e in nodes if isinstance(e.tag, str))


def _unique(candidate: str, used: Set[str]) -> str:
    if candidate not in used:
        return candidate
    i = 0
    while f"{candidate}_{i}" in used:
        i += 1
    return f"{candidate}_{i}"


def rewrite_ids(root: etree._Element, theme: str, group: str) -> etree._Element:
    """Return a copy of `root` with every placeholder identifier made final.

    Identifiers are derived from the theme, the sprite group, the enclosing
    icon's id and the element's tag, so the same icon gets distinct ids in
    each theme's sprite. All ids are assigned before any reference is
    touched, because a reference may precede its target in document order.
    """
    root = copy.deepcopy(root)
    prefix = f"{theme}_{group}"
    shapes = root.xpath(".//*[local-name()='svg'][@id]")

    assigned: Dict[str, str] = {}
    used: Set[str] = set()

    for shape in shapes:
        for elem in _elements(shape):
            old_id = elem.get("id")
            if old_id is None or PLACEHOLDER not in old_id:
                continue
            new_id = _unique(f"{prefix}_{shape.get('id')}___{etree.QName(elem).localname}", used)
            used.add(new_id)
            assigned[old_id] = new_id
            elem.set("id", new_id)

    # The shape keeps its own id but may itself reference its children
    for shape in shapes:
        for elem in _elements(shape, include_self=True):
            for attr, value in elem.attrib.items():
                if PLACEHOLDER in value:
                    elem.set(attr, replace_references(value, assigned))

    return root


def ensure_rewritten(markup: str, name: str = ""):
    if PLACEHOLDER in markup:
        raise PlaceholderError(f"{name}: placeholder identifiers left after rewriting")


def _length(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    m = LENGTH_RE.match(value)
    return float(m.group(1)) if m else None


def clean_icon(path: Path) -> Tuple[etree._Element, float, float]:
    """Parse one icon, strip editor cruft and return it with its size.

    The returned root always carries a viewBox and no width/height.
    """
    tree = etree.parse(str(path))
    etree.strip_elements(tree, etree.Comment, with_tail=False)
    root = tree.getroot()

    if etree.QName(root).namespace != SVG_NS or etree.QName(root).localname != "svg":
        raise ValueError(f"{path}: not an SVG document")

    # Remove all elements and attributes from editor namespaces
    for elem in root.xpath(".//*"):  # type: ignore
        if etree.QName(elem).namespace not in KEPT_NAMESPACES or etree.QName(elem).localname in (
            "metadata",
        ):
            parent = elem.getparent()
            if parent is not None:
                parent.remove(elem)

    for elem in root.iter():
        if not isinstance(elem.tag, str):
            continue
        for attr_name in list(elem.attrib.keys()):
            ns = etree.QName(attr_name).namespace
            if (ns is not None and ns not in KEPT_NAMESPACES) or attr_name.startswith("-inkscape"):
                del elem.attrib[attr_name]

        if "style" in elem.attrib:
            style_parts = [
                part.strip()
                for part in elem.attrib["style"].split(";")
                if part.strip() and not part.strip().startswith("-inkscape")
            ]
            if style_parts:
                elem.attrib["style"] = "; ".join(style_parts)
            else:
                del elem.attrib["style"]

    # Clean up unused namespace declarations
    etree.cleanup_namespaces(tree)

    width = _length(root.get("width"))
    height = _length(root.get("height"))
    viewBox = root.get("viewBox")

    if viewBox:
        parts = viewBox.replace(",", " ").split()
        if len(parts) != 4:
            raise ValueError(f"{path}: malformed viewBox {viewBox!r}")
        min_x, min_y, vw, vh = (float(p) for p in parts)
        width = width or vw
        height = height or vh
    elif width and height:
        min_x = min_y = 0.0
        vw, vh = width, height
        root.set("viewBox", f"0 0 {width:g} {height:g}")
    else:
        raise ValueError(f"{path}: neither viewBox nor size attributes found")

    # Absorb a lone translate() group into the viewBox origin
    children = [c for c in root if isinstance(c.tag, str)]
    if len(children) == 1 and etree.QName(children[0]).localname == "g":
        g = children[0]
        m = TRANSLATE_RE.match(g.get("transform", ""))
        if m:
            try:
                tx, ty = float(m.group(1)), float(m.group(2))
            except ValueError:
                tx = ty = None
            if tx is not None and ty is not None:
                root.set("viewBox", f"{min_x - tx:g} {min_y - ty:g} {vw:g} {vh:g}")
                del g.attrib["transform"]

    for attr in ("width", "height", "x", "y", "id"):
        root.attrib.pop(attr, None)

    return root, width, height


def namespace_ids(root: etree._Element, stem: str):
    """Replace every internal id of one icon with a placeholder-marked one."""
    mapping = {}
    for elem in root.iterdescendants():
        if isinstance(elem.tag, str) and elem.get("id"):
            mapping[elem.get("id")] = f"{PLACEHOLDER}{stem}__{elem.get('id')}"

    if not mapping:
        return

    for elem in root.iter():
        if not isinstance(elem.tag, str):
            continue
        for attr, value in elem.attrib.items():
            if attr == "id" and value in mapping:
                elem.set(attr, mapping[value])
            elif "#" in value:
                elem.set(attr, replace_references(value, mapping))


class SpriteCompiler:
    """Merge the icons of one sprite group into a vertically stacked sprite.

    Produces the combined markup (internal ids marked with PLACEHOLDER), a
    stylesheet with one selector per icon and an example page.
    """

    def __init__(
        self,
        options: Mapping,
        scales: Sequence[float] = (),
        themes: Sequence[str] = (),
        example: bool = False,
    ):
        self.options = options
        self.scales = tuple(scales)
        self.themes = tuple(themes)
        self.example = example

    def sprite_name(self, stem: str, digest: str) -> str:
        if self.options["svg"].get("bust", True):
            return f"{stem}-{digest}.svg"
        return f"{stem}.svg"

    def compile(self, group: SpriteGroup) -> CompiledSprite:
        margin = float(self.options["svg"].get("margin") or 0)
        sprite = etree.Element(f"{{{SVG_NS}}}svg", nsmap=NSMAP)

        icons: List[Tuple[str, float, float, float]] = []
        offset = 0.0
        total_width = 0.0
        seen: Set[str] = set()

        for path in group.members:
            icon, width, height = clean_icon(path)
            stem = path.stem
            if stem in seen:
                raise ValueError(f"{path}: duplicate icon name '{stem}' in sprite '{group.name}'")
            seen.add(stem)

            namespace_ids(icon, stem)
            icon.set("id", stem)
            icon.set("x", f"{margin:g}")
            icon.set("y", f"{offset + margin:g}")
            icon.set("width", f"{width:g}")
            icon.set("height", f"{height:g}")
            sprite.append(icon)

            icons.append((stem, offset, width + 2 * margin, height + 2 * margin))
            offset += height + 2 * margin
            total_width = max(total_width, width + 2 * margin)

        sprite.set("width", f"{total_width:g}")
        sprite.set("height", f"{offset:g}")
        sprite.set("viewBox", f"0 0 {total_width:g} {offset:g}")

        etree.cleanup_namespaces(sprite, top_nsmap=NSMAP)
        markup = etree.tostring(sprite, encoding="unicode")
        digest = hashlib.md5(markup.encode("utf-8")).hexdigest()[:8]
        sprite_name = self.sprite_name(group.stem, digest)
        logging.debug(f"Compiled {len(icons)} icons into {sprite_name}")

        return CompiledSprite(
            group=group.name,
            sprite_name=sprite_name,
            stylesheet_name=f"{self.options['css']['stylesheet_prefix']}{group.stem}.css",
            markup=markup,
            stylesheet=self.stylesheet(group.stem, sprite_name, icons, total_width, offset),
            example=self.example_page(group.stem, icons) if self.example else None,
        )

    def stylesheet(self, stem: str, sprite_name: str, icons, width: float, height: float) -> str:
        css, svg, png = self.options["css"], self.options["svg"], self.options["png"]
        common = f"{css['base_class']}-{stem}"
        dest = svg["public_dest"].rstrip("/")

        lines = [
            f".{common} {{",
            "  display: inline-block;",
            "  background-repeat: no-repeat;",
            f"  background-image: url({dest}/{sprite_name});",
            "}",
        ]
        for theme in self.themes:
            lines += [
                f".{theme} .{common} {{",
                f"  background-image: url({dest}/{theme}_{sprite_name});",
                "}",
            ]
        for scale in self.scales:
            lines += [
                f".{png['fallback_class']}.{png['scale_class_prefix']}_{format_scale(scale)} .{common} {{",
                f"  background-image: url(%png-path-{format_scale(scale)}%);",
                f"  background-size: {width:g}px {height:g}px;",
                "}",
            ]
        for name, offset, w, h in icons:
            lines += [
                f".{common}__{name} {{",
                f"  background-position: 0 {-offset if offset else 0:g}px;",
                f"  width: {w:g}px;",
                f"  height: {h:g}px;",
                "}",
            ]
        lines.append("")
        return "\n".join(lines)

    def example_page(self, stem: str, icons) -> str:
        lines = [
            "<!DOCTYPE html>",
            "<html>",
            "<head>",
            '  <meta charset="utf-8">',
            f"  <title>{stem}</title>",
            "</head>",
            "<body>",
            f'  <div style="display: none">{SPRITE_TOKEN}</div>',
        ]
        for name, _offset, w, h in icons:
            lines.append(
                f'  <svg width="{w:g}" height="{h:g}"><use href="#{name}"></use></svg>'
            )
        lines += ["</body>", "</html>", ""]
        return "\n".join(lines)
