import pytest

from asset_warehouse import cli
from asset_warehouse.ledger import IndexLedger

from conftest import write_image


def test_init_creates_layout(tmp_path, capsys):
    data_dir = tmp_path / "warehouse"
    cli.main(["init", "--data-dir", str(data_dir)])

    assert (data_dir / "index.md").exists()
    assert (data_dir / "temp").is_dir()
    assert (data_dir / "categories").is_dir()
    assert "Warehouse initialized" in capsys.readouterr().out


def test_list_and_report_on_empty_ledger(tmp_path, capsys):
    data_dir = tmp_path / "warehouse"
    cli.main(["list", "--data-dir", str(data_dir)])
    assert "0 asset(s)" in capsys.readouterr().out

    cli.main(["report", "--data-dir", str(data_dir)])
    assert "Total assets: 0" in capsys.readouterr().out
    assert IndexLedger(data_dir).parse_all() == []


def test_explain_structure(tmp_path, capsys):
    cli.main(["explain-structure", "--data-dir", str(tmp_path)])
    assert "Path pattern" in capsys.readouterr().out


def test_rejected_set_leaves_nothing_staged(tmp_path, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    data_dir = tmp_path / "warehouse"
    views = {slot: write_image(tmp_path / "uploads" / f"{slot}.png") for slot in ("front", "back", "left")}
    argv = ["ingest-set", "--data-dir", str(data_dir), "--title", "Teapot", "--artist", "Studio K"]
    for slot, path in views.items():
        argv += [f"--{slot}", str(path)]

    with pytest.raises(SystemExit, match="missing view"):
        cli.main(argv)

    assert list((data_dir / "temp").iterdir()) == []
    assert IndexLedger(data_dir).parse_all() == []
