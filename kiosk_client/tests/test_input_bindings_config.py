from __future__ import annotations

import json
from pathlib import Path

import pytest

from kiosk_client.input_bindings import DEFAULT_CONFIG, BindingConfig
from kiosk_core.remote_control import RELOAD, RESTART


def test_missing_file_is_created_with_defaults(tmp_path: Path) -> None:
    path = tmp_path / "keybindings.json"
    config = BindingConfig.load(path)
    assert path.exists()
    assert json.loads(path.read_text(encoding="utf-8")) == DEFAULT_CONFIG
    scheme = config.get_scheme()
    assert scheme.bindings[RELOAD] == ["F5"]
    assert scheme.bindings[RESTART] == ["Ctrl+Shift+R"]


def test_custom_scheme_is_selected(tmp_path: Path) -> None:
    path = tmp_path / "keybindings.json"
    path.write_text(
        json.dumps(
            {
                "active_scheme": "remote",
                "schemes": {
                    "remote": {"device_type": "remote", "bindings": {"reload": ["Media Play"], "restart": []}},
                },
            }
        ),
        encoding="utf-8",
    )
    config = BindingConfig.load(path)
    scheme = config.get_scheme()
    assert scheme.name == "remote"
    assert scheme.display_name == "remote"
    assert scheme.bindings == {"reload": ["Media Play"], "restart": []}


def test_unknown_active_scheme_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "keybindings.json"
    path.write_text(json.dumps({"active_scheme": "ghost", "schemes": {}}), encoding="utf-8")
    config = BindingConfig.load(path)
    assert config.source_path is None
    assert config.get_scheme().bindings[RELOAD] == ["F5"]


def test_unknown_scheme_name_raises() -> None:
    with pytest.raises(ValueError):
        BindingConfig.default().get_scheme("missing")


def test_shipped_keybindings_match_defaults() -> None:
    shipped = Path(__file__).resolve().parents[1] / "keybindings.json"
    assert json.loads(shipped.read_text(encoding="utf-8")) == DEFAULT_CONFIG
