"""Symbols identifying pose and landmark variables.

A symbol is a (category, index) pair such as ``x3`` (pose 3) or ``l0``
(landmark 0). Symbols are encoded into a single integer key with the
category character in the top byte, so ordering by key matches ordering
by (category, index).
"""

from __future__ import annotations

from dataclasses import dataclass

INDEX_BITS = 56
MAX_INDEX = (1 << INDEX_BITS) - 1
INVALID_CATEGORY = "u"
_INVALID_INDEX = -1


@dataclass(frozen=True, order=True)
class Symbol:
    """Identifier of a variable in the factor graph.

    Attributes:
        category: Single character tag (e.g. 'x' for poses, 'l' for landmarks)
        index: Non-negative index within the category
    """

    category: str
    index: int

    def __post_init__(self) -> None:
        """Validate category and index range."""
        if len(self.category) != 1:
            raise ValueError(
                f"Symbol category must be a single character, got {self.category!r}"
            )
        if self.category == INVALID_CATEGORY and self.index == _INVALID_INDEX:
            return
        if not 0 <= self.index <= MAX_INDEX:
            raise ValueError(f"Symbol index {self.index} out of range [0, {MAX_INDEX}]")

    @classmethod
    def invalid(cls) -> Symbol:
        """Return the sentinel symbol that refers to no variable."""
        return cls(INVALID_CATEGORY, _INVALID_INDEX)

    @classmethod
    def from_key(cls, key: int) -> Symbol:
        """Decode an integer key produced by :attr:`key`."""
        if key == _INVALID_INDEX:
            return cls.invalid()
        return cls(chr(key >> INDEX_BITS), key & MAX_INDEX)

    @classmethod
    def from_string(cls, text: str) -> Symbol:
        """Parse the canonical string form, e.g. ``"x12"``."""
        if len(text) < 2 or not text[1:].lstrip("-").isdigit():
            raise ValueError(f"Not a symbol string: {text!r}")
        return cls(text[0], int(text[1:]))

    @property
    def key(self) -> int:
        """Integer encoding: category in the top byte, index below."""
        if not self.is_valid:
            return _INVALID_INDEX
        return (ord(self.category) << INDEX_BITS) | self.index

    @property
    def is_valid(self) -> bool:
        return self.index != _INVALID_INDEX

    def __str__(self) -> str:
        return f"{self.category}{self.index}"


INVALID_SYMBOL = Symbol.invalid()


class SymbolRegistry:
    """Allocates pose and landmark indices without gaps or reuse.

    Both counters start at 0. ``next_*_index`` returns the next free
    index and advances the counter.
    """

    def __init__(self, pose_key: str = "x", landmark_key: str = "l") -> None:
        """Initialize registry.

        Args:
            pose_key: Category character for pose symbols
            landmark_key: Category character for landmark symbols
        """
        for key in (pose_key, landmark_key):
            if len(key) != 1:
                raise ValueError(f"Symbol keys must be single characters, got {key!r}")
            if key == INVALID_CATEGORY:
                raise ValueError(f"Category {INVALID_CATEGORY!r} is reserved")
        if pose_key == landmark_key:
            raise ValueError("Pose and landmark keys must differ")

        self._pose_key = pose_key
        self._landmark_key = landmark_key
        self._num_poses = 0
        self._num_landmarks = 0

    def next_pose_index(self) -> int:
        """Allocate the next pose index.

        Returns:
            The allocated index; the following call returns it plus one
        """
        index = self._num_poses
        self._num_poses += 1
        return index

    def next_landmark_index(self) -> int:
        """Allocate the next landmark index.

        Returns:
            The allocated index; the following call returns it plus one
        """
        index = self._num_landmarks
        self._num_landmarks += 1
        return index

    def make_symbol(self, category: str, index: int) -> Symbol:
        """Build a symbol of an arbitrary category.

        Args:
            category: Single character tag
            index: Index within the category

        Raises:
            ValueError: If the category or index is malformed
        """
        return Symbol(category, index)

    def pose_symbol(self, index: int) -> Symbol:
        """Symbol of pose ``index`` under this registry's pose key."""
        return Symbol(self._pose_key, index)

    def landmark_symbol(self, index: int) -> Symbol:
        """Symbol of landmark ``index`` under this registry's landmark key."""
        return Symbol(self._landmark_key, index)

    @staticmethod
    def to_string(symbol: Symbol) -> str:
        """Canonical string form, unique per symbol (e.g. ``"x3"``)."""
        return str(symbol)

    @staticmethod
    def invalid() -> Symbol:
        return INVALID_SYMBOL

    def is_pose(self, symbol: Symbol) -> bool:
        """Whether ``symbol`` is a valid symbol in the pose category."""
        return symbol.category == self._pose_key and symbol.is_valid

    def is_landmark(self, symbol: Symbol) -> bool:
        """Whether ``symbol`` is a valid symbol in the landmark category."""
        return symbol.category == self._landmark_key and symbol.is_valid

    def pose_symbols(self) -> list[Symbol]:
        """All allocated pose symbols in index order."""
        return [self.pose_symbol(i) for i in range(self._num_poses)]

    def landmark_symbols(self) -> list[Symbol]:
        """All allocated landmark symbols in index order."""
        return [self.landmark_symbol(i) for i in range(self._num_landmarks)]

    @property
    def pose_key(self) -> str:
        return self._pose_key

    @property
    def landmark_key(self) -> str:
        return self._landmark_key

    @property
    def num_poses(self) -> int:
        """Number of pose indices allocated so far."""
        return self._num_poses

    @property
    def num_landmarks(self) -> int:
        """Number of landmark indices allocated so far."""
        return self._num_landmarks

    @property
    def current_pose_symbol(self) -> Symbol:
        """Most recently allocated pose, or the invalid symbol if none."""
        if self._num_poses == 0:
            return INVALID_SYMBOL
        return self.pose_symbol(self._num_poses - 1)

    @property
    def current_landmark_symbol(self) -> Symbol:
        """Most recently allocated landmark, or the invalid symbol if none."""
        if self._num_landmarks == 0:
            return INVALID_SYMBOL
        return self.landmark_symbol(self._num_landmarks - 1)
