from pathlib import Path

import pytest

LEFT_SVG = """<svg xmlns="http://www.w3.org/2000/svg" xmlns:inkscape="http://www.inkscape.org/namespaces/inkscape" width="24" height="24" viewBox="0 0 24 24" inkscape:version="1.2">
  <!-- exported from an editor -->
  <path d="M0 0h24v24H0z" fill="url(#grad)"/>
  <defs>
    <linearGradient id="grad"><stop offset="0" stop-color="#000"/></linearGradient>
  </defs>
</svg>
"""

RIGHT_SVG = """<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" viewBox="0 0 16 16">
  <circle id="dot" cx="8" cy="8" r="4" fill="var(--red, #f00)"/>
  <use xlink:href="#dot" stroke="#fff"/>
</svg>
"""

ACCENT_SVG = """<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10">
  <rect width="10" height="10" fill="var(--accent)" stroke="var(--border)"/>
</svg>
"""


def write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def icons(tmp_path):
    """An icon tree with a single `arrows` sprite group of two icons."""
    root = tmp_path / "icons"
    write(root / "arrows" / "left.svg", LEFT_SVG)
    write(root / "arrows" / "right.svg", RIGHT_SVG)
    return root


@pytest.fixture
def outputs(tmp_path):
    return {
        "svg": tmp_path / "out" / "svg",
        "css": tmp_path / "out" / "css",
        "png": tmp_path / "out" / "png",
        "example": tmp_path / "out" / "example",
    }
