from __future__ import annotations

import pytest

import version


@pytest.mark.parametrize(
    "identifier, expected",
    [
        ("0.3.0", False),
        ("0.3.0-dev", True),
        ("0.4.0.dev2", True),
        ("1.0-dev-rc1", True),
        ("", False),
    ],
)
def test_is_dev_build_reads_version_markers(monkeypatch, identifier, expected) -> None:
    monkeypatch.delenv(version.DEV_MODE_ENV_VAR, raising=False)
    assert version.is_dev_build(identifier) is expected


def test_env_override_beats_version(monkeypatch) -> None:
    monkeypatch.setenv(version.DEV_MODE_ENV_VAR, "yes")
    assert version.is_dev_build("1.0.0") is True
    monkeypatch.setenv(version.DEV_MODE_ENV_VAR, "off")
    assert version.is_dev_build("1.0.0-dev") is False
    monkeypatch.setenv(version.DEV_MODE_ENV_VAR, "maybe")
    assert version.is_dev_build("1.0.0-dev") is True
