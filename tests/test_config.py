"""
tests/test_config.py — config.yaml Loading
===========================================
"""

from __future__ import annotations

import pytest

from hamsterhub.config import load_config

_BASE = """\
community_name: "HamsterHub"
guild_id: 123
dashboard_port: 8000
admin_role_id: 555
"""


def _write(tmp_path, text: str):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, _BASE))
        assert cfg.community_name == "HamsterHub"
        assert cfg.guild_id == 123
        assert cfg.admin_user_ids == frozenset()
        assert cfg.primary_starting_balance == 1000

    def test_admin_ids_and_starting_balance(self, tmp_path):
        cfg = load_config(_write(
            tmp_path,
            _BASE + "admin_user_ids: [42, '43']\nprimary_starting_balance: 250\n",
        ))
        assert cfg.is_admin_id(42)
        assert cfg.is_admin_id(43)
        assert not cfg.is_admin_id(44)
        assert cfg.primary_starting_balance == 250

    def test_negative_starting_balance(self, tmp_path):
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, _BASE + "primary_starting_balance: -1\n"))

    def test_missing_key(self, tmp_path):
        with pytest.raises(KeyError):
            load_config(_write(tmp_path, "community_name: x\n"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")
