"""Pytest fixtures and configuration for inboxmap tests.

Provides common fixtures for configuration, the mapping database, and
in-memory Gmail / Outlook mailboxes standing in for the provider APIs.
"""

import os
from pathlib import Path
from typing import Any, Generator

import pytest
from fakes import FakeGmailMailbox, FakeGraphMailbox

from inboxmap.config import reset_config
from inboxmap.config_schema import AppConfig
from inboxmap.providers.gmail import GmailAdapter
from inboxmap.providers.o365 import O365Adapter
from inboxmap.taxonomy.models import Provider
from inboxmap.taxonomy.registry import PROVIDER_CONFIGS


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml(tmp_path: Path) -> str:
    """Return a minimal valid config.yaml content."""
    return f"""
schema_version: 1

database:
  path: "{tmp_path / 'data' / 'inboxmap.db'}"

providers:
  timeout_seconds: 10
  max_retries: 0

suggestion:
  partial_threshold: 0.6

provisioning:
  max_items: 50
  max_concurrency: 1

logging:
  level: "DEBUG"
  json: false
"""


@pytest.fixture
def sample_config_dict(tmp_path: Path) -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "database": {"path": str(tmp_path / "data" / "inboxmap.db")},
        "providers": {"timeout_seconds": 10, "max_retries": 0},
        "suggestion": {"partial_threshold": 0.6},
        "provisioning": {"max_items": 50, "max_concurrency": 1},
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the INBOXMAP_CONFIG_PATH environment variable."""
    old_value = os.environ.get("INBOXMAP_CONFIG_PATH")
    os.environ["INBOXMAP_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["INBOXMAP_CONFIG_PATH"]
    else:
        os.environ["INBOXMAP_CONFIG_PATH"] = old_value


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data = tmp_path / "data"
    data.mkdir()
    return data


# ---------------------------------------------------------------------------
# In-memory provider mailboxes
# ---------------------------------------------------------------------------


@pytest.fixture
def gmail_mailbox() -> FakeGmailMailbox:
    """Return an empty in-memory Gmail mailbox."""
    return FakeGmailMailbox()


@pytest.fixture
def graph_mailbox() -> FakeGraphMailbox:
    """Return an empty in-memory Outlook mailbox."""
    return FakeGraphMailbox()


@pytest.fixture
def gmail_adapter(gmail_mailbox: FakeGmailMailbox) -> GmailAdapter:
    """Return a GmailAdapter talking to the in-memory mailbox."""
    return GmailAdapter(gmail_mailbox.client, PROVIDER_CONFIGS[Provider.GMAIL])


@pytest.fixture
def o365_adapter(graph_mailbox: FakeGraphMailbox) -> O365Adapter:
    """Return an O365Adapter talking to the in-memory mailbox."""
    return O365Adapter(graph_mailbox.client, PROVIDER_CONFIGS[Provider.O365])
