"""Tests for settings validation and environment overrides."""

import os
from unittest.mock import patch

import pytest

from pixeltrack.config.settings import (
    DEFAULT_URL_PATTERNS,
    APIConfig,
    CorrelatorConfig,
    InspectorConfig,
    ScopeConfig,
)


def test_api_config_default_origins():
    cfg = APIConfig()
    assert cfg.allowed_origins


def test_api_config_rejects_wildcard_origin():
    with pytest.raises(ValueError):
        APIConfig(allowed_origins=["*"])


def test_api_config_rejects_invalid_origin_url():
    with pytest.raises(ValueError):
        APIConfig(allowed_origins=["localhost:3000"])


def test_api_config_rejects_non_positive_history_limit():
    with pytest.raises(ValueError):
        APIConfig(signal_history_limit=0)


def test_parse_allowed_origins_rejects_wildcard():
    with pytest.raises(ValueError):
        APIConfig.parse_allowed_origins("https://a.test, *")


def test_correlator_defaults():
    with patch.dict(os.environ, {}, clear=False):
        os.environ.pop("PIXELTRACK_DAMPER_MS", None)
        os.environ.pop("PIXELTRACK_COUNT_TRANSPORT_ERRORS", None)
        cfg = CorrelatorConfig()
    assert cfg.damper_ms == 5000
    assert cfg.count_transport_errors is False
    assert "net::ERR_ABORTED" in cfg.cancellation_errors


def test_correlator_reads_environment():
    env = {"PIXELTRACK_DAMPER_MS": "250", "PIXELTRACK_COUNT_TRANSPORT_ERRORS": "true"}
    with patch.dict(os.environ, env):
        cfg = CorrelatorConfig()
    assert cfg.damper_ms == 250
    assert cfg.count_transport_errors is True


def test_correlator_rejects_negative_damper():
    with pytest.raises(ValueError):
        CorrelatorConfig(damper_ms=-1)


def test_scope_default_patterns():
    with patch.dict(os.environ, {}, clear=False):
        os.environ.pop("PIXELTRACK_URL_PATTERNS", None)
        cfg = ScopeConfig()
    assert cfg.url_patterns == DEFAULT_URL_PATTERNS
    assert cfg.resource_types == ["script", "image"]


def test_scope_patterns_from_environment():
    env = {"PIXELTRACK_URL_PATTERNS": "https://*.pixel.test/*, *://beacon.test/b/*"}
    with patch.dict(os.environ, env):
        cfg = ScopeConfig()
    assert cfg.url_patterns == ["https://*.pixel.test/*", "*://beacon.test/b/*"]


@pytest.mark.parametrize("pattern", ["sp.analytics.yahoo.com", "ftp://x.test/*", "*://*foo/*"])
def test_scope_rejects_invalid_pattern(pattern):
    with pytest.raises(ValueError):
        ScopeConfig(url_patterns=[pattern])


def test_scope_rejects_empty_patterns():
    with pytest.raises(ValueError):
        ScopeConfig(url_patterns=[" "])


def test_inspector_config_log_level_from_environment():
    with patch.dict(os.environ, {"PIXELTRACK_LOG_LEVEL": "DEBUG"}):
        cfg = InspectorConfig()
    assert cfg.log_level == "DEBUG"
