#!python3
"""Build themed SVG sprites, their stylesheets and PNG fallbacks from a tree of icons."""

import argparse
import asyncio
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from lxml import etree
from tqdm import tqdm

from convert import BaseConverter, InkscapeConverter
from garbage import GarbageCollector
from svg import SPRITE_TOKEN, SpriteCompiler, ensure_rewritten, rewrite_ids
from theming import load_custom_properties, render_theme
from utils import (
    CompiledSprite,
    ConversionError,
    OutputArtifact,
    SpriteGroup,
    Theme,
    check_dir,
    find_sprites,
    format_scale,
    gather_settled,
    merge_deep,
    setup_logging,
)

DEFAULT_OPTIONS: Dict[str, Any] = {
    "css": {
        "stylesheet_prefix": "icons-",
        "base_class": "Icon",
    },
    "svg": {
        "margin": 0,
        "public_dest": "/",
        "bust": True,
    },
    "png": {
        "public_dest": "/",
        "fallback_class": "png",
        "scale_class_prefix": "scale",
    },
    "themes": {},
    "concurrency": None,
    "fresh": False,
    "progress": True,
}


@dataclass(frozen=True)
class OutputPaths:
    svg: Path
    css: Path
    png: Optional[Path] = None
    example: Optional[Path] = None

    def __post_init__(self):
        for name in ("svg", "css", "png", "example"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, Path(value))

    def tracked(self) -> List[Path]:
        """Directories whose artifacts carry a content hash."""
        return [p for p in (self.png, self.svg, self.example) if p is not None]


def load_themes(themes: Mapping[str, Mapping[str, Any]]) -> List[Theme]:
    """Turn the `themes` option into Theme objects with exactly one default."""
    if not themes:
        return [Theme(name="default", is_default=True)]

    defaults = [name for name, t in themes.items() if t.get("is_default")]
    if not defaults:
        defaults = [next(iter(themes))]
        logging.warning(f"No default theme given, using '{defaults[0]}'")
    elif len(defaults) > 1:
        logging.warning(f"Several default themes given ({', '.join(defaults)}), using '{defaults[0]}'")

    return [
        Theme(
            name=name,
            is_default=name == defaults[0],
            variables=dict(t.get("variables") or {}),
            import_from=tuple(Path(p) for p in t.get("import_from") or ()),
        )
        for name, t in themes.items()
    ]


def themed_name(theme: Theme, sprite_name: str) -> str:
    return sprite_name if theme.is_default else f"{theme.name}_{sprite_name}"


class Pipeline:
    """One run of the generator. Not reusable across runs."""

    def __init__(
        self,
        output: OutputPaths,
        converter: Optional[BaseConverter],
        options: Dict[str, Any],
        themes: List[Theme],
    ):
        self.output = output
        self.converter = converter
        self.options = options
        self.themes = themes
        self.collector = GarbageCollector()
        self.compiler = SpriteCompiler(
            options,
            scales=converter.scales if converter else (),
            themes=[t.name for t in themes if not t.is_default],
            example=output.example is not None,
        )
        limit = options.get("concurrency")
        self.semaphore = asyncio.Semaphore(limit) if limit else None

    async def run(self, sprites: Dict[str, List[Path]]) -> Dict[str, OutputArtifact]:
        artifacts: Dict[str, OutputArtifact] = {}

        with tqdm(
            total=len(sprites),
            desc="Compiling sprites",
            unit=" sprites",
            disable=not self.options.get("progress", True),
        ) as pbar:

            async def _one(name: str, members: List[Path]):
                try:
                    artifacts[name] = await self.sprite(SpriteGroup(name, tuple(members)))
                finally:
                    pbar.update(1)

            await gather_settled(*(_one(name, members) for name, members in sprites.items()))

        await asyncio.to_thread(self.collector.collect)
        return {name: artifacts[name] for name in sprites}

    async def sprite(self, group: SpriteGroup) -> OutputArtifact:
        if self.semaphore is None:
            return await self._sprite(group)
        async with self.semaphore:
            return await self._sprite(group)

    async def _sprite(self, group: SpriteGroup) -> OutputArtifact:
        compiled = await asyncio.to_thread(self.compiler.compile, group)

        svg = self.output.svg / compiled.sprite_name
        css = self.output.css / compiled.stylesheet_name
        self.collector.record(svg)
        artifact = OutputArtifact(css=css)

        await asyncio.to_thread(css.write_text, compiled.stylesheet, encoding="utf-8")

        tree = etree.fromstring(compiled.markup)
        rendered = await gather_settled(*(self.theme(theme, compiled, tree) for theme in self.themes))
        for theme, (path, _markup) in zip(self.themes, rendered):
            artifact.svg[theme.name] = path

        if self.output.example is not None and compiled.example is not None:
            default_markup = next(m for t, (_p, m) in zip(self.themes, rendered) if t.is_default)
            artifact.example = await self.example(compiled, default_markup)

        if self.converter is not None:
            artifact.png = await self.rasterize(svg, css)

        return artifact

    async def theme(self, theme: Theme, compiled: CompiledSprite, tree: etree._Element):
        properties = await asyncio.to_thread(load_custom_properties, theme.import_from, theme.variables)
        themed = render_theme(tree, properties, theme.name)
        rewritten = rewrite_ids(themed, theme.name, compiled.group)
        markup = etree.tostring(rewritten, encoding="unicode")
        ensure_rewritten(markup, themed_name(theme, compiled.sprite_name))

        path = self.output.svg / themed_name(theme, compiled.sprite_name)
        await asyncio.to_thread(path.write_text, markup, encoding="utf-8")
        self.collector.record(path)
        return path, markup

    async def example(self, compiled: CompiledSprite, default_markup: str) -> Path:
        path = self.output.example / (Path(compiled.sprite_name).stem + ".html")
        page = compiled.example.replace(SPRITE_TOKEN, default_markup)
        ensure_rewritten(page, path.name)
        await asyncio.to_thread(path.write_text, page, encoding="utf-8")
        self.collector.record(path)
        return path

    async def rasterize(self, svg: Path, css: Path) -> Dict[float, Path]:
        png = await self.converter.process(svg)
        if set(png) != set(self.converter.scales):
            raise ConversionError(
                [type(self.converter).__name__, str(svg)],
                f"expected scales {sorted(self.converter.scales)}, got {sorted(png)}",
            )

        stylesheet = await asyncio.to_thread(css.read_text, encoding="utf-8")
        dest = self.options["png"]["public_dest"].rstrip("/")
        for scale, path in png.items():
            self.collector.record(path)
            stylesheet = stylesheet.replace(f"%png-path-{format_scale(scale)}%", f"{dest}/{Path(path).name}")

        await asyncio.to_thread(css.write_text, stylesheet, encoding="utf-8")
        return png


async def generate(
    path: Path,
    output: OutputPaths,
    converter: Optional[BaseConverter] = None,
    options: Optional[Dict[str, Any]] = None,
) -> Dict[str, OutputArtifact]:
    """Compile every icon directory under `path` into themed sprites.

    Returns the written artifacts per sprite group. Any failure aborts the
    run after in-flight work settles; stale files are only removed when the
    whole run succeeds.
    """
    options = merge_deep(DEFAULT_OPTIONS, options or {})
    themes = load_themes(options["themes"])

    path = Path(path)
    check_dir(path)
    check_dir(output.svg)
    check_dir(output.css)
    check_dir(output.png)
    check_dir(output.example)

    pipeline = Pipeline(output, converter, options, themes)
    for folder in output.tracked():
        pipeline.collector.track(folder)

    if options["fresh"]:
        pipeline.collector.empty()

    sprites = await asyncio.to_thread(find_sprites, path)
    return await pipeline.run(sprites)


def main(args):
    options: Dict[str, Any] = {}
    if args.config:
        options = json.loads(args.config.read_text(encoding="utf-8"))
    if args.fresh:
        options["fresh"] = True
    if args.concurrency:
        options["concurrency"] = args.concurrency
    if args.no_progress:
        options["progress"] = False

    converter = None
    if args.scales:
        if args.png_dir is None:
            raise SystemExit("--scales requires --png-dir")
        converter = InkscapeConverter(args.scales, output=args.png_dir, binary=args.inkscape)

    output = OutputPaths(
        svg=args.svg_dir,
        css=args.css_dir,
        png=args.png_dir,
        example=args.example_dir,
    )

    start = time.monotonic()
    artifacts = asyncio.run(generate(args.input, output, converter, options))
    logging.info(f"Generated {len(artifacts)} sprites in {time.monotonic() - start:.2f}s")


def cli():
    parser = argparse.ArgumentParser(
        description="Generate themed SVG sprites with stylesheets and PNG fallbacks."
    )
    parser.add_argument("input", type=Path, help="Directory tree with SVG icons")
    parser.add_argument("--svg-dir", type=Path, required=True, help="Where SVG sprites are written")
    parser.add_argument("--css-dir", type=Path, required=True, help="Where stylesheets are written")
    parser.add_argument("--png-dir", type=Path, help="Where PNG fallbacks are written")
    parser.add_argument("--example-dir", type=Path, help="Where example pages are written")
    parser.add_argument(
        "--scales",
        type=float,
        nargs="+",
        help="PNG fallback scales, e.g. 1 2 (requires Inkscape)",
    )
    parser.add_argument("--inkscape", default="inkscape", help="Inkscape binary")
    parser.add_argument("--config", type=Path, help="JSON file with generator options and themes")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Empty the output directories before building",
    )
    parser.add_argument("--concurrency", type=int, help="Maximum sprites compiled at once")
    parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    setup_logging()
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    main(args)


if __name__ == "__main__":
    cli()
