"""
Asset catalog
=============
Backgrounds and puzzle-shape cutouts are pre-rendered PNG files under the
assets directory:

    assets/image/01.png … assets/image/36.png
    assets/puzzle/1.png … assets/puzzle/4.png

An asset reference is the path relative to the assets directory
(``"image/07.png"``), which is what sessions store.
"""

from __future__ import annotations

from pathlib import Path

from captcha_service import config

AssetRef = str


class AssetCatalog:
    """Reports which numbered assets currently exist on storage."""

    def __init__(
        self,
        root: Path | str = config.ASSETS_DIR,
        background_count: int = config.BACKGROUND_COUNT,
        puzzle_count: int = config.PUZZLE_SHAPE_COUNT,
    ) -> None:
        self.root = Path(root)
        self.background_count = background_count
        self.puzzle_count = puzzle_count

    def _existing(self, refs: list[AssetRef]) -> list[AssetRef]:
        return [ref for ref in refs if (self.root / ref).is_file()]

    def list_backgrounds(self) -> list[AssetRef]:
        """Background refs that exist, in numeric order. Empty if none do."""
        return self._existing(
            [f"image/{i:02d}.png" for i in range(1, self.background_count + 1)]
        )

    def list_puzzle_shapes(self) -> list[AssetRef]:
        """Puzzle-shape refs that exist, in numeric order. Empty if none do."""
        return self._existing(
            [f"puzzle/{i}.png" for i in range(1, self.puzzle_count + 1)]
        )

    def resolve(self, ref: AssetRef) -> Path:
        return self.root / ref
