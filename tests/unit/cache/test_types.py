"""Tests for the cache type registry and key generation."""

import pytest

from diagcache.cache.types import (
    CACHE_CONFIG,
    USER_SCOPED_TYPES,
    CacheTTL,
    CacheType,
    entity_pattern,
    generate_cache_key,
    parse_identifier,
)


class TestCacheTypeRegistry:
    """Test the static type configuration."""

    def test_every_type_is_configured(self) -> None:
        """Each cache type has a prefix and TTL."""
        assert set(CACHE_CONFIG) == set(CacheType)

    def test_prefixes_are_distinct(self) -> None:
        """No two types share a key prefix."""
        prefixes = [config.prefix for config in CACHE_CONFIG.values()]
        assert len(prefixes) == len(set(prefixes))

    @pytest.mark.parametrize(
        ("cache_type", "prefix", "ttl"),
        [
            (CacheType.PURCHASE_HISTORY, "user:purchase:", 1800),
            (CacheType.APPOINTMENTS, "user:appointments:", 300),
            (CacheType.ANALYTICS, "user:analytics:", 3600),
            (CacheType.ORDER_DETAILS, "order:details:", 1800),
            (CacheType.USER_PROFILE, "user:profile:", 86400),
            (CacheType.SWELL_CUSTOMER, "swell:customer:", 3600),
            (CacheType.SYSTEM_STATS, "system:stats:", 300),
            (CacheType.SECURITY_EVENTS, "security:events:", 86400),
        ],
    )
    def test_type_configuration(self, cache_type: CacheType, prefix: str, ttl: int) -> None:
        """Prefix and TTL match the registry."""
        assert cache_type.prefix == prefix
        assert cache_type.ttl == ttl

    def test_registry_is_read_only(self) -> None:
        """The registry cannot be mutated at runtime."""
        with pytest.raises(TypeError):
            CACHE_CONFIG[CacheType.ANALYTICS] = CacheType.APPOINTMENTS.config  # type: ignore[index]

    def test_ttl_tiers(self) -> None:
        """TTL tiers are expressed in seconds."""
        assert CacheTTL.SHORT == 300
        assert CacheTTL.PERMANENT == 7 * 24 * 3600

    def test_parse_known_and_unknown(self) -> None:
        """parse() maps stored strings to types and rejects unknown ones."""
        assert CacheType.parse("appointments") is CacheType.APPOINTMENTS
        assert CacheType.parse("lab_results") is None

    def test_user_scoped_types(self) -> None:
        """User-scoped types are the four keyed by user id."""
        assert set(USER_SCOPED_TYPES) == {
            CacheType.PURCHASE_HISTORY,
            CacheType.APPOINTMENTS,
            CacheType.ANALYTICS,
            CacheType.USER_PROFILE,
        }


class TestCacheKeys:
    """Test key generation and parsing."""

    def test_key_without_suffix(self) -> None:
        """Key is prefix plus identifier."""
        assert generate_cache_key(CacheType.PURCHASE_HISTORY, "u-1") == "user:purchase:u-1"

    def test_key_with_suffix(self) -> None:
        """Suffix is appended after a colon."""
        key = generate_cache_key(CacheType.PURCHASE_HISTORY, "u-1", "page-2")
        assert key == "user:purchase:u-1:page-2"

    def test_empty_suffix_is_ignored(self) -> None:
        """An empty suffix produces the base key."""
        assert generate_cache_key(CacheType.APPOINTMENTS, "u-1", "") == "user:appointments:u-1"

    def test_entity_pattern_matches_all_suffixes(self) -> None:
        """Entity pattern is the base key followed by a glob."""
        assert entity_pattern(CacheType.ANALYTICS, "u-1") == "user:analytics:u-1*"

    def test_parse_identifier(self) -> None:
        """Identifier is the text after the prefix, up to the first colon."""
        assert parse_identifier(CacheType.ORDER_DETAILS, "order:details:o-9") == "o-9"
        assert parse_identifier(CacheType.ORDER_DETAILS, "order:details:o-9:items") == "o-9"

    def test_parse_identifier_rejects_foreign_prefix(self) -> None:
        """Keys of another type are not parsed."""
        assert parse_identifier(CacheType.ORDER_DETAILS, "swell:customer:c-1") is None
        assert parse_identifier(CacheType.ORDER_DETAILS, "order:details:") is None
