"""
Shared test fixtures for FamilySearch SDK tests.

Provides configuration, registry, transport and client fixtures.
"""

from typing import Any

import pytest

from familysearch_sdk.client import FamilySearchClient
from familysearch_sdk.config import FamilySearchConfig, RetryConfig, TokenConfig
from familysearch_sdk.conveniences import install_defaults
from familysearch_sdk.core.http_executor import RequestExecutor
from familysearch_sdk.core.token_manager import TokenManager
from familysearch_sdk.mapping import ResponseMapper
from familysearch_sdk.registry import ConvenienceRegistry

from .helpers import FakeTransport


@pytest.fixture
def config() -> FamilySearchConfig:
    """Provide a basic SDK configuration with short retry delays."""
    return FamilySearchConfig(
        app_key="test-app-key",
        environment="integration",
        auth_callback="https://app.example.com/auth",
        retry=RetryConfig(max_retries=2, retry_delay=0.01),
    )


@pytest.fixture
def no_expiry_config(config: FamilySearchConfig) -> FamilySearchConfig:
    """Provide a configuration whose tokens never auto-expire."""
    return config.with_overrides(token=TokenConfig(auto_expire=False))


@pytest.fixture
def registry() -> ConvenienceRegistry:
    """Provide a fresh registry with the default kinds installed."""
    return install_defaults(ConvenienceRegistry())


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def tokens(config: FamilySearchConfig) -> TokenManager:
    manager = TokenManager(config)
    manager.set_token("test-token")
    return manager


@pytest.fixture
def executor(
    config: FamilySearchConfig,
    transport: FakeTransport,
    tokens: TokenManager,
    registry: ConvenienceRegistry,
) -> RequestExecutor:
    return RequestExecutor(config, transport, tokens, mapper=ResponseMapper(registry))


@pytest.fixture
def client(
    config: FamilySearchConfig,
    transport: FakeTransport,
    registry: ConvenienceRegistry,
) -> FamilySearchClient:
    return FamilySearchClient(config, transport=transport, registry=registry)


@pytest.fixture
def sample_person() -> dict[str, Any]:
    """Provide a GEDCOM X person as returned by the tree API."""
    return {
        "id": "KWQS-BBQ",
        "living": False,
        "gender": {"type": "http://gedcomx.org/Male"},
        "display": {
            "name": "John Smith",
            "gender": "Male",
            "lifespan": "1900-1970",
            "birthDate": "3 March 1900",
            "birthPlace": "Provo, Utah",
        },
        "names": [
            {
                "id": "name-1",
                "preferred": True,
                "nameForms": [
                    {
                        "fullText": "John Smith",
                        "parts": [
                            {"type": "http://gedcomx.org/Given", "value": "John"},
                            {"type": "http://gedcomx.org/Surname", "value": "Smith"},
                        ],
                    }
                ],
            }
        ],
        "facts": [
            {
                "id": "fact-1",
                "type": "http://gedcomx.org/Birth",
                "date": {"original": "3 March 1900", "formal": "+1900-03-03"},
                "place": {"original": "Provo, Utah"},
            },
            {
                "id": "fact-2",
                "type": "http://gedcomx.org/Death",
                "date": {"original": "1970"},
                "place": {"original": "Salt Lake City, Utah"},
            },
        ],
    }
