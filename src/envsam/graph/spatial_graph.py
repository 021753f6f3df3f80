"""Spatial bookkeeping graph of frames, typed items and transform edges.

The spatial graph mirrors the factor graph: every pose and landmark
variable has a frame keyed by its symbol, and every relative measurement
has a directed transform edge. Items are stored in one table per item
type, each keyed by symbol, so lookups never dispatch on runtime type
inside a frame.

Edges live in an adjacency list (symbol -> outgoing edges), plus an
ordered list of every edge for export.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterator, TypeVar

import numpy as np

from ..errors import FrameExistsError, ItemNotFoundError, UnknownFrameError
from ..frontend.pose import SE3
from ..symbols import Symbol

T = TypeVar("T")


@dataclass
class TransformEdge:
    """Directed edge carrying a relative transform and its covariance.

    Attributes:
        source: Symbol the transform is expressed from
        target: Symbol the transform points to
        transform: Relative transform T_source_target
        covariance: 6x6 covariance, [translation, rotation] ordering
        timestamp_ns: Optional measurement time
    """

    source: Symbol
    target: Symbol
    transform: SE3
    covariance: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))
    timestamp_ns: int | None = None


class SpatialGraph:
    """Frames with typed items and directed transform edges."""

    def __init__(self) -> None:
        """Initialize empty graph."""
        # Frame table: insertion ordered
        self._frames: dict[Symbol, None] = {}

        # One table per item type: type -> symbol -> items
        self._items: dict[type, dict[Symbol, list]] = defaultdict(dict)

        # Adjacency list: source -> outgoing edges
        self._out_edges: dict[Symbol, list[TransformEdge]] = defaultdict(list)
        self._in_edges: dict[Symbol, list[TransformEdge]] = defaultdict(list)
        self._edges: list[TransformEdge] = []

    def add_frame(self, symbol: Symbol) -> None:
        """Create an empty frame.

        Raises:
            FrameExistsError: If the symbol already has a frame
        """
        if symbol in self._frames:
            raise FrameExistsError(symbol)
        self._frames[symbol] = None

    def contains_frame(self, symbol: Symbol) -> bool:
        """Whether ``symbol`` has a frame, with or without items."""
        return symbol in self._frames

    def add_item_to_frame(self, symbol: Symbol, item: object) -> None:
        """Append a typed item to an existing frame.

        Raises:
            UnknownFrameError: If the frame does not exist
        """
        if symbol not in self._frames:
            raise UnknownFrameError(symbol)
        self._items[type(item)].setdefault(symbol, []).append(item)

    def get_item(self, symbol: Symbol, item_type: type[T]) -> T:
        """Return the first item of ``item_type`` in a frame.

        Raises:
            UnknownFrameError: If the frame does not exist
            ItemNotFoundError: If the frame holds no item of that type
        """
        items = self.get_items(symbol, item_type)
        if not items:
            raise ItemNotFoundError(symbol, item_type)
        return items[0]

    def find_item(self, symbol: Symbol, item_type: type[T]) -> T | None:
        """Like :meth:`get_item` but returns None instead of raising."""
        items = self._items.get(item_type, {}).get(symbol)
        return items[0] if items else None

    def get_items(self, symbol: Symbol, item_type: type[T]) -> list[T]:
        """Return all items of ``item_type`` in a frame (oldest first).

        Raises:
            UnknownFrameError: If the frame does not exist
        """
        if symbol not in self._frames:
            raise UnknownFrameError(symbol)
        return list(self._items.get(item_type, {}).get(symbol, []))

    def contains_items(self, symbol: Symbol, item_type: type) -> bool:
        """Whether the frame exists and holds at least one item of the type."""
        return self.item_count(symbol, item_type) > 0

    def item_count(self, symbol: Symbol, item_type: type) -> int:
        """Number of items of the type in the frame (0 for unknown frames)."""
        return len(self._items.get(item_type, {}).get(symbol, []))

    def add_transform(
        self,
        source: Symbol,
        target: Symbol,
        transform: SE3,
        covariance: np.ndarray | None = None,
        timestamp_ns: int | None = None,
    ) -> TransformEdge:
        """Record a directed edge. Parallel edges are kept, not merged.

        Args:
            source: Frame the transform is expressed in
            target: Frame the transform points to
            transform: Pose of ``target`` relative to ``source``
            covariance: (6, 6) covariance in [translation, rotation] order (zeros if None)
            timestamp_ns: Measurement time, if known

        Returns:
            The stored edge

        Raises:
            ValueError: If the covariance is not 6x6
        """
        if covariance is None:
            covariance = np.zeros((6, 6))
        covariance = np.asarray(covariance, dtype=np.float64)
        if covariance.shape != (6, 6):
            raise ValueError(f"Edge covariance must be 6x6, got {covariance.shape}")

        edge = TransformEdge(
            source=source,
            target=target,
            transform=transform.copy(),
            covariance=covariance.copy(),
            timestamp_ns=timestamp_ns,
        )
        self._out_edges[source].append(edge)
        self._in_edges[target].append(edge)
        self._edges.append(edge)
        return edge

    def edges_from(self, symbol: Symbol) -> list[TransformEdge]:
        """Outgoing edges of ``symbol`` in insertion order."""
        return list(self._out_edges.get(symbol, []))

    def edges_to(self, symbol: Symbol) -> list[TransformEdge]:
        """Incoming edges of ``symbol`` in insertion order."""
        return list(self._in_edges.get(symbol, []))

    def edges_between(self, source: Symbol, target: Symbol) -> list[TransformEdge]:
        """Every parallel edge from ``source`` to ``target``."""
        return [e for e in self._out_edges.get(source, []) if e.target == target]

    def frames(self) -> Iterator[Symbol]:
        """Iterate frame symbols in creation order."""
        return iter(list(self._frames))

    @property
    def edges(self) -> tuple[TransformEdge, ...]:
        """All edges in insertion order."""
        return tuple(self._edges)

    @property
    def num_frames(self) -> int:
        return len(self._frames)

    @property
    def num_edges(self) -> int:
        return len(self._edges)
