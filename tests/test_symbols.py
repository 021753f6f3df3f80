"""Tests for Symbol and SymbolRegistry."""

import pytest

from envsam.symbols import INVALID_SYMBOL, MAX_INDEX, Symbol, SymbolRegistry


class TestSymbol:
    """Test suite for Symbol."""

    @pytest.mark.parametrize(
        "category,index",
        [("x", 0), ("x", 1), ("l", 42), ("x", MAX_INDEX), ("a", 7)],
    )
    def test_key_round_trip(self, category: str, index: int):
        """Test that encoding to a key and back gives the same symbol."""
        symbol = Symbol(category, index)
        assert Symbol.from_key(symbol.key) == symbol

    def test_string_form(self):
        """Test the canonical string form and its parsing."""
        symbol = Symbol("x", 12)
        assert str(symbol) == "x12"
        assert Symbol.from_string("x12") == symbol

    def test_string_form_unique(self):
        """Test that distinct symbols have distinct strings."""
        symbols = [Symbol(c, i) for c in "xl" for i in range(20)]
        assert len({str(s) for s in symbols}) == len(symbols)

    def test_ordering_matches_key_ordering(self):
        """Test that ordering by key matches (category, index) ordering."""
        symbols = [Symbol("x", 3), Symbol("l", 10), Symbol("x", 0), Symbol("l", 2)]
        assert sorted(symbols) == sorted(symbols, key=lambda s: s.key)
        assert sorted(symbols)[0] == Symbol("l", 2)

    def test_invalid_symbol(self):
        """Test the invalid sentinel."""
        assert not INVALID_SYMBOL.is_valid
        assert INVALID_SYMBOL == Symbol.invalid()
        assert INVALID_SYMBOL.key == -1
        assert Symbol.from_key(-1) == INVALID_SYMBOL
        assert Symbol("x", 0).is_valid

    def test_rejects_bad_values(self):
        """Test that malformed symbols raise ValueError."""
        with pytest.raises(ValueError):
            Symbol("xy", 0)
        with pytest.raises(ValueError):
            Symbol("x", -1)
        with pytest.raises(ValueError):
            Symbol("x", MAX_INDEX + 1)
        with pytest.raises(ValueError):
            Symbol.from_string("x")


class TestSymbolRegistry:
    """Test suite for SymbolRegistry."""

    def test_indices_are_sequential(self):
        """Test that pose and landmark counters start at 0 without gaps."""
        registry = SymbolRegistry()
        assert [registry.next_pose_index() for _ in range(4)] == [0, 1, 2, 3]
        assert [registry.next_landmark_index() for _ in range(2)] == [0, 1]
        assert registry.num_poses == 4
        assert registry.num_landmarks == 2

    def test_current_symbols(self):
        """Test current pose/landmark symbols before and after allocation."""
        registry = SymbolRegistry()
        assert registry.current_pose_symbol == INVALID_SYMBOL
        assert registry.current_landmark_symbol == INVALID_SYMBOL

        registry.next_pose_index()
        registry.next_pose_index()
        registry.next_landmark_index()

        assert registry.current_pose_symbol == Symbol("x", 1)
        assert registry.current_landmark_symbol == Symbol("l", 0)

    def test_symbol_lists(self):
        """Test that allocated symbols are listed in index order."""
        registry = SymbolRegistry(pose_key="p", landmark_key="m")
        for _ in range(3):
            registry.next_pose_index()
        assert registry.pose_symbols() == [Symbol("p", 0), Symbol("p", 1), Symbol("p", 2)]
        assert registry.landmark_symbols() == []
        assert registry.is_pose(Symbol("p", 5))
        assert not registry.is_landmark(Symbol("p", 5))

    def test_rejects_bad_keys(self):
        """Test that reserved or duplicate keys are rejected."""
        with pytest.raises(ValueError):
            SymbolRegistry(pose_key="u")
        with pytest.raises(ValueError):
            SymbolRegistry(pose_key="x", landmark_key="x")
        with pytest.raises(ValueError):
            SymbolRegistry(pose_key="xx")

    def test_make_symbol(self):
        """Test that make_symbol builds symbols of any category without allocating."""
        registry = SymbolRegistry()
        symbol = registry.make_symbol("a", 7)
        assert symbol == Symbol("a", 7)
        assert registry.to_string(symbol) == "a7"
        assert registry.num_poses == 0
        assert not registry.is_pose(symbol)
        with pytest.raises(ValueError):
            registry.make_symbol("x", -3)
