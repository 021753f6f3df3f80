"""Error kinds raised by the smoothing-and-mapping core.

Lookups in the graph stores raise these; the orchestrating layers
(candidate search, data association, optimization) catch the lookup
errors, log them, and return early with an empty result.
"""

from __future__ import annotations


class SAMError(Exception):
    """Base class for all envsam errors."""


class UnknownFrameError(SAMError, KeyError):
    """A symbol has no frame in the spatial graph."""

    def __init__(self, symbol: object) -> None:
        super().__init__(f"Frame {symbol} does not exist")
        self.symbol = symbol

    def __str__(self) -> str:
        return self.args[0]


class ItemNotFoundError(SAMError, KeyError):
    """A frame exists but holds no item of the requested type."""

    def __init__(self, symbol: object, item_type: type) -> None:
        super().__init__(f"Frame {symbol} has no {item_type.__name__}")
        self.symbol = symbol
        self.item_type = item_type

    def __str__(self) -> str:
        return self.args[0]


class FrameExistsError(SAMError):
    """A frame was added twice for the same symbol."""

    def __init__(self, symbol: object) -> None:
        super().__init__(f"Frame {symbol} already exists")
        self.symbol = symbol


class NoiseModelError(SAMError, ValueError):
    """A noise model is malformed or does not match the measurement dimension."""


class SolverError(SAMError, RuntimeError):
    """The graph solver could not produce an estimate."""
