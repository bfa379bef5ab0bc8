#!/usr/bin/env python3
"""Test script for configuration."""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pydantic import ValidationError as SettingsValidationError

from digest_index.core.config import ConfigAccessor, Settings, config
from digest_index.core.exceptions import ConfigurationError


def test_defaults():
    print("Testing configuration defaults...")
    settings = config.settings
    assert settings.EMBEDDING_DIMENSION == 1536
    assert settings.SIMILARITY_METRIC == "cosine"
    assert config.batch_config == {"max_batch_size": 100, "max_concurrent_batches": 5}
    assert config.query_defaults["namespace"] == "daily-digests"
    assert config.health_config["healthy_threshold"] == 2
    assert config.health_config["unhealthy_threshold"] == 3
    print("✓ Defaults match the documented configuration surface")


def test_typed_views():
    accessor = ConfigAccessor(Settings(
        RETRY_MAX_ATTEMPTS=5,
        RETRY_INITIAL_DELAY_MS=200,
        RETRY_MAX_DELAY_MS=800,
        ALLOW_EXTRA_FIELDS=True,
        EMBEDDING_DIMENSION=768,
        HEALTH_CHECK_TIMEOUT_MS=1500,
    ))

    policy = accessor.retry_policy
    assert (policy.max_retries, policy.initial_delay_ms, policy.max_delay_ms) == (5, 200, 800)

    health_policy = accessor.health_retry_policy
    assert health_policy.max_retries == 1
    assert health_policy.timeout_ms == 1500

    schema = accessor.metadata_schema
    assert schema.allow_extra_fields is True
    assert schema.dimension == 768
    assert "publisher" in schema.required_fields
    print("✓ Retry policy and metadata schema built from settings")


def test_invalid_settings_rejected():
    print("Testing settings validation...")
    invalid = [
        {"SIMILARITY_METRIC": "manhattan"},
        {"RETRY_INITIAL_DELAY_MS": 5000, "RETRY_MAX_DELAY_MS": 1000},
        {"REQUIRED_METADATA_FIELDS": ["publisher", "favourite_color"]},
        {"MAX_BATCH_SIZE": 0},
        {"LOG_LEVEL": "chatty"},
    ]
    for overrides in invalid:
        try:
            Settings(**overrides)
        except SettingsValidationError:
            pass
        else:
            raise AssertionError(f"{overrides} accepted")
    print(f"✓ {len(invalid)} invalid configurations rejected")


def test_startup_credentials():
    settings = Settings(PINECONE_API_KEY=None, OPENAI_API_KEY=None)
    try:
        settings.validate_critical_startup_config()
    except ConfigurationError as e:
        assert e.details["field"] == "PINECONE_API_KEY"
    else:
        raise AssertionError("missing credentials accepted")

    assert settings.validate_index_credentials()["api_key_configured"] is False
    Settings(PINECONE_API_KEY="pc-key", OPENAI_API_KEY="sk-key").validate_critical_startup_config()
    print("✓ Missing credentials raise ConfigurationError")


if __name__ == "__main__":
    print("=" * 60)
    print("Testing Configuration")
    print("=" * 60)

    test_defaults()
    test_typed_views()
    test_invalid_settings_rejected()
    test_startup_credentials()

    print("\n✅ All configuration tests passed!")
