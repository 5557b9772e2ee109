"""Unit tests for SourceCache."""

from decimal import Decimal
from unittest.mock import patch

from mountainshift.src.Price import Price
from mountainshift.src.SourceCache import SourceCache


class TestSourceCache:
    """Test last-known-good storage."""

    def test_empty(self) -> None:
        """Unknown entries are None."""
        cache = SourceCache()
        assert cache.get("okx", "arb", "usd") is None
        assert cache.get_age("okx", "arb", "usd") is None
        assert len(cache) == 0

    def test_set_and_get(self) -> None:
        """Stored prices come back unchanged."""
        cache = SourceCache()
        price = Price(Decimal("0.42"), "okx")
        cache.set("okx", "arb", "usd", price)
        assert cache.get("okx", "arb", "usd") is price

    def test_last_write_wins(self) -> None:
        """A newer write replaces the older value."""
        cache = SourceCache()
        cache.set("okx", "arb", "usd", Price(Decimal("0.40"), "okx"))
        cache.set("okx", "arb", "usd", Price(Decimal("0.41"), "okx"))
        assert cache.get("okx", "arb", "usd").value == Decimal("0.41")
        assert len(cache) == 1

    def test_keys_are_per_source_and_pair(self) -> None:
        """Sources and pairs do not share entries; symbols are case-insensitive."""
        cache = SourceCache()
        cache.set("okx", "ARB", "USD", Price(Decimal("0.4"), "okx"))
        assert cache.get("okx", "arb", "usd") is not None
        assert cache.get("kraken", "arb", "usd") is None
        assert cache.get("okx", "btc", "usd") is None

    def test_instances_are_isolated(self) -> None:
        """Two caches never see each other's entries."""
        a, b = SourceCache(), SourceCache()
        a.set("okx", "arb", "usd", Price(Decimal("0.4"), "okx"))
        assert b.get("okx", "arb", "usd") is None

    @patch("mountainshift.src.SourceCache.time.time")
    def test_entries_never_expire(self, mock_time) -> None:
        """Old entries stay available and report their age."""
        cache = SourceCache()
        cache.set("okx", "arb", "usd", Price(Decimal("0.4"), "okx", fetched_at=1000.0))
        mock_time.return_value = 1000.0 + 86400 * 30
        assert cache.get("okx", "arb", "usd") is not None
        assert cache.get_age("okx", "arb", "usd") == 86400 * 30

    def test_clear(self) -> None:
        """clear() drops everything."""
        cache = SourceCache()
        cache.set("okx", "arb", "usd", Price(Decimal("0.4"), "okx"))
        cache.clear()
        assert len(cache) == 0
