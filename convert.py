import asyncio
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from utils import ConversionError, UnsupportedVersionError, format_scale, gather_settled

VERSION_RE = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")

# Inkscape renders one CSS pixel per 1/92 inch at scale 1
BASE_DPI = 92


class BaseConverter(ABC):
    """Turns an SVG sprite into one PNG per scale.

    Subclasses implement `process`, which must return a mapping holding
    exactly one PNG path for every entry of `scales`.
    """

    def __init__(self, scales: Iterable[float] = (1,), output: Optional[Path] = None):
        self.scales = tuple(scales)
        if not self.scales or any(s <= 0 for s in self.scales):
            raise ValueError(f"Scales must be positive numbers: {self.scales}")
        self.output = Path(output) if output is not None else None

    def target(self, svg: Path, scale: float) -> Path:
        svg = Path(svg)
        folder = self.output if self.output is not None else svg.parent
        return folder / f"{svg.stem}_{format_scale(scale)}x.png"

    @abstractmethod
    async def process(self, svg: Path) -> Dict[float, Path]:
        ...


def parse_version(text: str) -> Tuple[int, int, int]:
    m = VERSION_RE.search(text)
    if not m:
        raise UnsupportedVersionError(text.strip())
    return int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)


class InkscapeConverter(BaseConverter):
    def __init__(
        self,
        scales: Iterable[float] = (1,),
        output: Optional[Path] = None,
        binary: str = "inkscape",
    ):
        super().__init__(scales, output)
        self.binary = binary
        self._version: Optional[Tuple[int, int, int]] = None
        self._version_lock = asyncio.Lock()

    async def _run(self, *args: str) -> str:
        command = [self.binary, *args]
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise ConversionError(command, stderr.decode("utf-8", "replace"))
        return stdout.decode("utf-8", "replace")

    async def version(self) -> Tuple[int, int, int]:
        async with self._version_lock:
            if self._version is None:
                raw = await self._run("--version")
                version = parse_version(raw)
                major, minor, _patch = version
                if major == 0 and minor < 91:
                    raise UnsupportedVersionError(raw.strip())
                logging.debug(f"Using Inkscape {'.'.join(map(str, version))}")
                self._version = version
        return self._version

    def command(self, version: Tuple[int, int, int], svg: Path, png: Path, scale: float) -> List[str]:
        major, minor, _patch = version
        dpi = f"{scale * BASE_DPI:g}"
        if major >= 1:
            return [str(svg), "--export-type=png", f"--export-filename={png}", f"--export-dpi={dpi}"]
        if major == 0 and minor >= 90:
            return [str(svg), f"--export-png={png}", f"--export-dpi={dpi}", "--without-gui"]
        raise UnsupportedVersionError(".".join(map(str, version)))

    async def _convert(self, version, svg: Path, scale: float) -> Tuple[float, Path]:
        png = self.target(svg, scale)
        args = self.command(version, svg, png, scale)
        await self._run(*args)
        if not png.exists():
            raise ConversionError([self.binary, *args], f"{png} was not written")
        return scale, png

    async def process(self, svg: Path) -> Dict[float, Path]:
        svg = Path(svg).resolve()
        version = await self.version()
        results = await gather_settled(*(self._convert(version, svg, s) for s in self.scales))
        return dict(results)
