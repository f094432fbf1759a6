# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- Unit tests
- Integration tests
"""

from collections.abc import Generator

import pytest

from schoolauth.core.config.settings import clear_settings_cache


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_settings() -> Generator[None, None, None]:
    """Reload settings from the environment for every test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(scope="session")
def test_environment() -> dict[str, str]:
    """Provide test environment variables.

    Returns:
        Dictionary of environment variables for testing.
    """
    return {
        "ENVIRONMENT": "test",
        "DEBUG": "false",
        "LOG_LEVEL": "DEBUG",
        "DATABASE_HOST": "db.test.local",
        "DATABASE_PORT": "5433",
        "DATABASE_USER": "schoolauth_test",
        "DATABASE_PASSWORD": "schoolauth_test_password",
        "DATABASE_NAME": "schoolauth_test",
        "MIGRATION_VERSION_TABLE": "test_alembic_version",
    }
