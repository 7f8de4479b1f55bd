#!/usr/bin/env python3
"""
ReconCore - ConfigurationContext tests
"""

import pytest

from reconcore.core.config_context import ConfigurationContext, create_config_context
from reconcore.core.errors import ConfigurationError
from reconcore.utils.constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_WORKERS,
    MAX_BANNER_BYTES,
    MAX_WORKERS,
)


def test_defaults():
    ctx = ConfigurationContext()
    assert ctx.workers == DEFAULT_WORKERS
    assert ctx.connect_timeout == DEFAULT_CONNECT_TIMEOUT
    assert ctx.banner_size == MAX_BANNER_BYTES
    assert ctx.banner_nudge is True
    assert ctx.payload_file is None
    assert ctx.nmap_path == "nmap"
    assert ctx.nmap_extra_args == []
    assert ctx.dry_run is False


def test_string_values_are_cast():
    ctx = ConfigurationContext({"workers": "12", "connect_timeout": "0.25"})
    assert ctx.workers == 12
    assert ctx.connect_timeout == 0.25


def test_workers_clamped():
    assert ConfigurationContext({"workers": MAX_WORKERS * 10}).workers == MAX_WORKERS


def test_empty_value_falls_back_to_default():
    assert ConfigurationContext({"connect_timeout": ""}).connect_timeout == DEFAULT_CONNECT_TIMEOUT
    assert ConfigurationContext({"workers": None}).workers == DEFAULT_WORKERS


@pytest.mark.parametrize(
    "key,value",
    [("workers", "many"), ("workers", 0), ("udp_timeout", -0.5), ("banner_size", "big"), ("nmap_timeout", 0)],
)
def test_invalid_values_rejected(key, value):
    ctx = ConfigurationContext({key: value})
    with pytest.raises(ConfigurationError):
        getattr(ctx, key)
    with pytest.raises(ConfigurationError):
        ctx.validate()


def test_nmap_extra_args_forms():
    assert ConfigurationContext({"nmap_extra_args": "-T4 --script 'banner,ssh-hostkey'"}).nmap_extra_args == [
        "-T4",
        "--script",
        "banner,ssh-hostkey",
    ]
    assert ConfigurationContext({"nmap_extra_args": ["-T4", 3]}).nmap_extra_args == ["-T4", "3"]


def test_mapping_interface_and_extras():
    ctx = ConfigurationContext({"custom": 1})
    assert ctx["custom"] == 1
    assert "custom" in ctx
    ctx["other"] = 2
    del ctx["custom"]
    assert "custom" not in ctx
    assert ctx.raw["other"] == 2
    assert len(ctx) == len(list(ctx))


def test_setters():
    ctx = ConfigurationContext()
    ctx.workers = 3
    ctx.connect_timeout = 1.5
    ctx.banner_timeout = 0.5
    assert (ctx.workers, ctx.connect_timeout, ctx.banner_timeout) == (3, 1.5, 0.5)


def test_create_config_context():
    ctx = ConfigurationContext()
    assert create_config_context(ctx) is ctx
    assert create_config_context({"workers": 5}).workers == 5
    assert create_config_context(None).workers == DEFAULT_WORKERS
