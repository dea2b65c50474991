"""
Shared pytest fixtures for credential core tests.

Values are intentionally NOT real token patterns; use obviously fake strings.
"""

import logging
import random
from io import StringIO

import pytest

from llm_gateway.credentials.pool import CredentialPool
from llm_gateway.credentials.redaction import CredentialLoggingFilter
from llm_gateway.credentials.store import CredentialStore


TEST_ENCRYPTION_SECRET = "test-credential-encryption-secret"


# ============================================================================
# CORE FIXTURES
# ============================================================================

@pytest.fixture
def encryption_secret():
    return TEST_ENCRYPTION_SECRET


@pytest.fixture
def store(encryption_secret):
    """Fresh, empty store per test."""
    return CredentialStore(encryption_secret=encryption_secret)


@pytest.fixture
def pool(store):
    """Pool with a seeded RNG so key selection is reproducible."""
    return CredentialPool(store, rng=random.Random(1234))


@pytest.fixture
def oauth_config():
    return {
        "name": "Team account",
        "access_token": "test_access_token_not_real",
        "refresh_token": "test_refresh_token_not_real",
        "organization_id": "org_test",
        "owner_email": "owner@example.com",
    }


@pytest.fixture
def api_key_config():
    return {
        "name": "Key pool",
        "endpoint_type": "openai",
        "api_keys": ["fk-test-key-one-not-real", "fk-test-key-two-not-real"],
    }


# ============================================================================
# LOG CAPTURE
# ============================================================================

@pytest.fixture
def log_capture():
    """
    Capture every credential logger through a redacting handler.

    Yields the stream the handler writes to.
    """
    log_stream = StringIO()
    handler = logging.StreamHandler(log_stream)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))
    handler.addFilter(CredentialLoggingFilter())

    loggers = [logging.getLogger("llm_gateway"), logging.getLogger("credentials.audit")]
    previous_levels = [log.level for log in loggers]
    for log in loggers:
        log.addHandler(handler)
        log.setLevel(logging.DEBUG)

    yield log_stream

    for log, level in zip(loggers, previous_levels):
        log.removeHandler(handler)
        log.setLevel(level)
