from __future__ import annotations

import json

import pytest

from clients.cli import cipherpay_cli


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(cipherpay_cli, "setup_logging", lambda level=None: None)
    for key in ("CIPHERPAY_BACKEND", "USE_REAL_SDK", "USE_FALLBACK_SERVICE", "CIPHERPAY_PRODUCTION"):
        monkeypatch.delenv(key, raising=False)


def test_demo_runs_end_to_end(capsys):
    rc = cipherpay_cli.main(["demo"])
    out = capsys.readouterr().out
    assert rc == 0
    assert "Settled" in out
    assert "Status: confirmed" in out
    assert "300000000" in out


def test_status_prints_json(capsys):
    assert cipherpay_cli.main(["status"]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["initialized"] is True
    assert status["connected"] is False


def test_notes_from_state_file(tmp_path, capsys):
    path = tmp_path / "notes.json"
    path.write_text(json.dumps({"version": 1, "notes": [
        {"commitment": "0xaa", "nullifier": "0xbb", "amount": 5},
        {"commitment": "0xcc", "nullifier": "0xdd", "amount": 7, "spent": True},
    ]}))

    assert cipherpay_cli.main(["--notes-file", str(path), "notes", "--json"]) == 0
    listed = json.loads(capsys.readouterr().out)
    assert [n["commitment"] for n in listed] == ["0xaa"]

    assert cipherpay_cli.main(["--notes-file", str(path), "notes", "--all", "--json"]) == 0
    assert len(json.loads(capsys.readouterr().out)) == 2


def test_typed_errors_exit_nonzero(capsys):
    assert cipherpay_cli.main(["path", "0xUNKNOWN"]) == 1
    assert "CommitmentNotFound" in capsys.readouterr().err


def test_demo_refuses_real_backend(capsys):
    assert cipherpay_cli.main(["--backend", "real", "demo"]) == 2
