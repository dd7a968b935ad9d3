"""
Shared fixtures for the configuration service tests.
"""

import pytest
from pathlib import Path
from types import SimpleNamespace
from typing import Dict

from rampart.infrastructure.config.settings import ServiceSettings

VALID_ENVIRON = {
    'DISCORD_BOT_TOKEN': 'discord.token-value',
    'GOOGLE_API_KEY': 'google_api_key_value',
}


@pytest.fixture
def healthy_environ() -> Dict[str, str]:
    """Credentials that satisfy the api_keys check."""
    return dict(VALID_ENVIRON)


@pytest.fixture
def plenty_of_memory(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make the memory check see a large host and a small process."""
    fake_psutil = SimpleNamespace(
        virtual_memory=lambda: SimpleNamespace(total=16 * 1024 ** 3),
        Process=lambda: SimpleNamespace(memory_info=lambda: SimpleNamespace(rss=64 * 1024 ** 2)),
    )
    monkeypatch.setattr("rampart.infrastructure.monitoring.checks.psutil", fake_psutil)


@pytest.fixture
def service_settings(tmp_path: Path) -> ServiceSettings:
    """Settings rooted in a temporary directory with background loops disabled."""
    return ServiceSettings.from_dict({
        'environment': 'test',
        'audit': {'cleanup_interval': 0, 'persist_retry_delay': 0},
        'monitoring': {'poll_interval': 0},
        'watcher': {'enabled': False},
        'logging': {
            'log_directory': str(tmp_path / "logs"),
            'console_enabled': False,
            'file_enabled': False,
        },
    }).with_base_directory(tmp_path)
