import logging
import os
from pathlib import Path
from typing import List, Set

from utils import check_dir


class GarbageCollector:
    """Removes files left behind by earlier runs from the output directories.

    Every artifact name carries a content hash (`<name>-<hash>[_<suffix>].<ext>`).
    Hashes of what the current run wrote are recorded; `collect()` deletes
    every file in a tracked directory whose hash was not recorded. Both sets
    only ever grow during a run.
    """

    def __init__(self):
        self.paths: Set[Path] = set()
        self.hashes: Set[str] = set()

    def track(self, path: Path):
        self.paths.add(Path(path))

    def record_hash(self, file_hash: str):
        self.hashes.add(file_hash)

    def record(self, path: Path):
        self.record_hash(self.extract_hash(Path(path).name))

    @staticmethod
    def extract_hash(filename: str) -> str:
        name, _ext = os.path.splitext(filename.split("-")[-1])
        return name.split("_")[0]

    def empty(self):
        for path in sorted(self.paths):
            check_dir(path, flush=True)

    def collect(self) -> List[Path]:
        removed = []
        for path in sorted(self.paths):
            for file in sorted(path.iterdir()):
                if not file.is_file():
                    continue
                if self.extract_hash(file.name) not in self.hashes:
                    logging.debug(f"Removing stale {file}")
                    file.unlink()
                    removed.append(file)

        if removed:
            logging.info(f"Removed {len(removed)} stale files.")
        return removed
