"""Mip chain container and conversion result records."""

import time
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np


def mip_dimensions(width: int, height: int) -> List[Tuple[int, int]]:
    """Return ``(width, height)`` for every level down to 1x1."""
    if width < 1 or height < 1:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
    dims = [(width, height)]
    while width > 1 or height > 1:
        width = max(1, width >> 1)
        height = max(1, height >> 1)
        dims.append((width, height))
    return dims


class MipChain:
    """Immutable sequence of RGBA8 levels, level 0 first, ending at 1x1."""

    __slots__ = ("_levels",)

    def __init__(self, levels: Sequence[np.ndarray]):
        levels = tuple(levels)
        if not levels:
            raise ValueError("MipChain requires at least one level")
        h, w = levels[0].shape[:2]
        expected = mip_dimensions(w, h)
        if len(levels) != len(expected):
            raise ValueError(
                f"MipChain for {w}x{h} needs {len(expected)} levels, got {len(levels)}"
            )
        frozen = []
        for index, (level, (ew, eh)) in enumerate(zip(levels, expected)):
            if level.dtype != np.uint8 or level.ndim != 3 or level.shape[2] != 4:
                raise ValueError(
                    f"Mip level {index} must be an HxWx4 uint8 array, "
                    f"got {level.dtype} {level.shape}"
                )
            if level.shape[:2] != (eh, ew):
                raise ValueError(
                    f"Mip level {index} is {level.shape[1]}x{level.shape[0]}, "
                    f"expected {ew}x{eh}"
                )
            if level.flags.writeable:
                level = level.copy()
                level.setflags(write=False)
            frozen.append(level)
        self._levels = tuple(frozen)

    def __len__(self) -> int:
        return len(self._levels)

    def __getitem__(self, index) -> np.ndarray:
        return self._levels[index]

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(self._levels)

    def __repr__(self) -> str:
        return f"MipChain({self.width}x{self.height}, levels={len(self)})"

    @property
    def width(self) -> int:
        return self._levels[0].shape[1]

    @property
    def height(self) -> int:
        return self._levels[0].shape[0]

    @property
    def dimensions(self) -> List[Tuple[int, int]]:
        return [(lvl.shape[1], lvl.shape[0]) for lvl in self._levels]

    @property
    def levels(self) -> Tuple[np.ndarray, ...]:
        return self._levels

    def same_pixels(self, other: "MipChain") -> bool:
        """True when both chains hold identical bytes at every level."""
        if len(self) != len(other):
            return False
        return all(np.array_equal(a, b) for a, b in zip(self, other))


@dataclass
class ConversionResult:
    """Outcome of converting one file."""

    input_path: str
    success: bool
    output_path: Optional[str] = None
    error: Optional[str] = None
    mip_levels: int = 0
    duration: float = 0.0
    toksvig_applied: bool = False
    normal_map_used: Optional[str] = None
    mipmaps_dir: Optional[str] = None


@dataclass
class BatchProgress:
    """Snapshot published after each file completes."""

    current_file: int
    total_files: int
    current_file_name: str
    success_count: int
    failure_count: int

    @property
    def percent_complete(self) -> float:
        if self.total_files <= 0:
            return 100.0
        return 100.0 * self.current_file / self.total_files


@dataclass
class BatchResult:
    """Aggregate outcome of a directory conversion."""

    total_files: int = 0
    results: Sequence[ConversionResult] = field(default_factory=list)
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    cancelled: bool = False
    error: Optional[str] = None

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def duration(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        return max(0.0, end - self.start_time)

    def failures(self) -> List[ConversionResult]:
        return [r for r in self.results if not r.success]
