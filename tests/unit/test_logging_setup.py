"""Unit tests for logging configuration."""
from __future__ import annotations

import logging

from delex_client.logging_setup import configure_logging


class TestConfigureLogging:
    def test_sets_info_level(self) -> None:
        configure_logging("INFO")
        assert logging.getLogger().level == logging.INFO

    def test_sets_debug_level(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_lowercase_level(self) -> None:
        configure_logging("warning")
        assert logging.getLogger().level == logging.WARNING

    def test_silences_aiohttp(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger("aiohttp").level == logging.WARNING

    def test_aiohttp_children_drop_debug_but_keep_warnings(self) -> None:
        configure_logging("DEBUG")
        access = logging.getLogger("aiohttp.client")
        assert not access.isEnabledFor(logging.DEBUG)
        assert not access.isEnabledFor(logging.INFO)
        assert access.isEnabledFor(logging.WARNING)
        assert logging.getLogger("delex_client.services").isEnabledFor(logging.DEBUG)

    def test_invalid_level_defaults_to_info(self) -> None:
        configure_logging("NONEXISTENT")
        assert logging.getLogger().level == logging.INFO
