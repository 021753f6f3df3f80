"""Axis-aligned bounding boxes in the global frame."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass
class AlignedBoundingBox:
    """Axis-aligned box grown by extending it with points.

    An empty box has ``min = +inf`` and ``max = -inf`` on every axis and
    contains nothing.

    Attributes:
        min: (3,) lower corner
        max: (3,) upper corner
    """

    min: np.ndarray = field(default_factory=lambda: np.full(3, np.inf))
    max: np.ndarray = field(default_factory=lambda: np.full(3, -np.inf))

    def __post_init__(self) -> None:
        self.min = np.asarray(self.min, dtype=np.float64).flatten()
        self.max = np.asarray(self.max, dtype=np.float64).flatten()
        if self.min.shape != (3,) or self.max.shape != (3,):
            raise ValueError("Bounding box corners must be (3,)")

    @classmethod
    def empty(cls) -> AlignedBoundingBox:
        return cls()

    @classmethod
    def from_points(cls, *points: np.ndarray) -> AlignedBoundingBox:
        box = cls()
        for point in points:
            box.extend(point)
        return box

    def extend(self, point: np.ndarray) -> None:
        """Grow the box so that it contains ``point``."""
        point = np.asarray(point, dtype=np.float64).flatten()
        self.min = np.minimum(self.min, point)
        self.max = np.maximum(self.max, point)

    def contains(self, point: np.ndarray) -> bool:
        """Inclusive containment test."""
        point = np.asarray(point, dtype=np.float64).flatten()
        return bool(np.all(self.min <= point) and np.all(point <= self.max))

    @property
    def is_empty(self) -> bool:
        return bool(np.any(self.min > self.max))

    @property
    def center(self) -> np.ndarray:
        return 0.5 * (self.min + self.max)

    @property
    def sizes(self) -> np.ndarray:
        return self.max - self.min
