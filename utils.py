import asyncio
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Dict, List, Optional, Tuple

# Marker the sprite compiler puts in every internal identifier it emits.
PLACEHOLDER = "___CHANGEME___"

COLORS = {
    "DEBUG": "\033[36m",  # cyan
    "INFO": "\033[32m",  # green
    "WARNING": "\033[33m",  # yellow
    "ERROR": "\033[31m",  # red
    "CRITICAL": "\033[1;31m",  # bold red
}
COLOR_RESET = "\033[0m"


class ColorFormatter(logging.Formatter):
    def format(self, record):
        color = COLORS.get(record.levelname, "")
        record.levelname = f"{color}{record.levelname}{COLOR_RESET}"
        return super().format(record)


def setup_logging():
    handler = logging.StreamHandler()
    handler.setFormatter(ColorFormatter("%(levelname)s %(message)s"))
    logging.root.addHandler(handler)
    logging.root.setLevel(logging.INFO)


class SpriteError(Exception):
    """Base class for every failure raised while generating sprites."""


class UnresolvedColorsError(SpriteError):
    def __init__(self, theme: str, names: List[str]):
        self.theme = theme
        self.names = names
        super().__init__(
            f"Can not resolve colors for theme '{theme}': {', '.join(names)}"
        )


class UnsupportedVersionError(SpriteError):
    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Unsupported converter version: {version}")


class ConversionError(SpriteError):
    def __init__(self, command: List[str], stderr: str = ""):
        self.command = command
        self.stderr = stderr
        message = f"Conversion failed: {' '.join(command)}"
        if stderr:
            message += f"\n{stderr.strip()}"
        super().__init__(message)


class PlaceholderError(SpriteError):
    """A placeholder identifier survived the rewrite pass."""


@dataclass(frozen=True)
class SpriteGroup:
    name: str
    members: Tuple[Path, ...]

    @property
    def stem(self) -> str:
        return sprite_stem(self.name)


@dataclass(frozen=True)
class Theme:
    name: str
    is_default: bool = False
    variables: Dict[str, str] = field(default_factory=dict)
    import_from: Tuple[Path, ...] = ()


@dataclass(frozen=True)
class CompiledSprite:
    """Output of the sprite compiler for one group.

    `markup` and `example` still contain PLACEHOLDER identifiers; `example`
    additionally holds a `%sprite%` token for the default theme's markup.
    """

    group: str
    sprite_name: str
    stylesheet_name: str
    markup: str
    stylesheet: str
    example: Optional[str] = None


@dataclass
class OutputArtifact:
    css: Path
    svg: Dict[str, Path] = field(default_factory=dict)
    example: Optional[Path] = None
    png: Dict[float, Path] = field(default_factory=dict)


def sprite_stem(group_name: str) -> str:
    """Name used in output files; root-level icons have an empty group name."""
    return group_name or "sprite"


def format_scale(scale: float) -> str:
    return f"{scale:g}"


def merge_deep(target: Dict[str, Any], *sources: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of `target` with each source merged in, nested dicts recursively."""
    merged = dict(target)
    for source in sources:
        for key, value in (source or {}).items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = merge_deep(merged[key], value)
            elif isinstance(value, dict):
                merged[key] = merge_deep({}, value)
            else:
                merged[key] = value
    return merged


def check_dir(path: Optional[Path], flush: bool = False):
    if path is None:
        return
    path = Path(path)
    if path.exists():
        if flush:
            for child in path.iterdir():
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
        return
    path.mkdir(parents=True)


def _raise(err: OSError):
    raise err


def find_sprites(root: Path) -> Dict[str, List[Path]]:
    """Group every SVG under `root` by the directory it lives in.

    The group name is the directory path relative to `root` with separators
    replaced by dashes, so `root/social/brands/x.svg` belongs to
    `social-brands`. Files directly in `root` form the group `""`.
    """
    root = Path(root)
    found: Dict[str, List[Path]] = {}

    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames.sort()
        rel = Path(dirpath).relative_to(root)
        name = "-".join(rel.parts)
        for fname in sorted(filenames):
            if Path(fname).suffix == ".svg":
                found.setdefault(name, []).append(Path(dirpath) / fname)

    return dict(sorted(found.items()))


async def gather_settled(*aws: Awaitable) -> List[Any]:
    """Await all of `aws`, then re-raise the first failure, if any.

    Unlike a plain gather, no failure is reported until every sibling has
    finished, so callers never run ahead of work still writing to disk.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results
