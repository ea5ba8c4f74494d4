"""Tests for the dev launcher."""

import main


def _run(monkeypatch, *argv: str) -> list[tuple[tuple, dict]]:
    calls = []
    monkeypatch.setattr(main.uvicorn, "run", lambda *a, **kw: calls.append((a, kw)))
    monkeypatch.setattr("sys.argv", ["main.py", *argv])
    main.main()
    return calls


def test_starts_backend_with_data_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("DATA_DIR", "unused")
    calls = _run(monkeypatch, "--data-dir", str(tmp_path))
    (args, kwargs), = calls
    assert args == ("backend.app:app",)
    assert kwargs["reload"] is True
    assert kwargs["port"] == main.BACKEND_PORT
    assert main.os.environ["DATA_DIR"] == str(tmp_path.resolve())


def test_demo_seeds_storage(monkeypatch, tmp_path):
    monkeypatch.setenv("DATA_DIR", "unused")
    _run(monkeypatch, "--data-dir", str(tmp_path), "--demo")
    assert (tmp_path / "questTree.json").is_file()
    assert (tmp_path / "permissions.json").is_file()
