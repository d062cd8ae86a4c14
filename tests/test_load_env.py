import os
from pathlib import Path

import run


def test_dotenv_fills_missing_vars_but_keeps_real_env(tmp_path: Path, monkeypatch):
    (tmp_path / ".env").write_text(
        "# local overrides\nKINGFINDER_TRANSPORT=http\nKINGFINDER_DOTENV_MARKER=from-dotenv\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("KINGFINDER_TRANSPORT", "browser")
    monkeypatch.delenv("KINGFINDER_DOTENV_MARKER", raising=False)

    try:
        run.load_env(root_dir=tmp_path)

        assert os.environ["KINGFINDER_TRANSPORT"] == "browser"
        assert os.environ["KINGFINDER_DOTENV_MARKER"] == "from-dotenv"
        assert run.default_transport() == "browser"
    finally:
        os.environ.pop("KINGFINDER_DOTENV_MARKER", None)


def test_dotenv_selects_transport_when_env_is_unset(tmp_path: Path, monkeypatch):
    (tmp_path / "custom.env").write_text("KINGFINDER_TRANSPORT=http\n", encoding="utf-8")
    monkeypatch.delenv("KINGFINDER_TRANSPORT", raising=False)

    try:
        run.load_env(path="custom.env", root_dir=tmp_path)
        assert run.default_transport() == "http"
    finally:
        os.environ.pop("KINGFINDER_TRANSPORT", None)


def test_load_env_without_file_is_a_noop(tmp_path: Path, monkeypatch):
    def fail_load_dotenv(**_kwargs):
        raise AssertionError("dotenv should not be called")

    monkeypatch.setattr(run, "_load_dotenv", fail_load_dotenv)
    run.load_env(root_dir=tmp_path)
