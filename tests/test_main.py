"""Tests for process bootstrap."""

import main


def test_unknown_command(capsys):
    assert main.main(["bogus"]) == 2
    assert "Unknown command: bogus" in capsys.readouterr().out


def test_missing_config_aborts_before_binding(tmp_path):
    assert main.main(["serve", str(tmp_path / "absent.conf")]) == 1


def test_invalid_config_aborts_before_binding(tmp_path):
    path = tmp_path / "config.conf"
    path.write_text("expiration=abc\n", encoding="utf-8")
    assert main.main(["serve", str(path)]) == 1
