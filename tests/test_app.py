import json
import logging
from pathlib import Path

import pytest

from shorts_blocker import app
from shorts_blocker.config import consume_load_warnings
from shorts_blocker.logging_setup import LOGGER_NAME, get_logger, parse_level, setup_logging

PAGE = """<html><body><div id="contents">
<ytd-rich-item-renderer id="short1"><a href="/shorts/abc">Short</a></ytd-rich-item-renderer>
<ytd-rich-item-renderer id="video1"><a href="/watch?v=xyz">Video</a></ytd-rich-item-renderer>
</div></body></html>"""


@pytest.fixture
def quiet_app(monkeypatch):
    monkeypatch.setattr(app, "ensure_runtime_files", lambda: None)
    monkeypatch.setattr(app, "setup_logging", lambda level="INFO", log_file=None: logging.getLogger("test"))


def base_args(tmp_path: Path):
    return ["--settings", str(tmp_path / "settings.json"), "--rules", str(tmp_path / "block_rules.json")]


def test_parse_overrides_accepts_store_and_field_names():
    parsed = app.parse_overrides(["blockyoutubeshorts=false", "block_vertical_video=1", "blockInstagramReels= ON "])
    assert parsed == {
        "blockYouTubeShorts": False,
        "blockVerticalVideo": True,
        "blockInstagramReels": True,
    }


@pytest.mark.parametrize("item", ["nope=true", "blockVerticalVideo=maybe", "blockVerticalVideo"])
def test_parse_overrides_rejects_bad_items(item):
    with pytest.raises(ValueError):
        app.parse_overrides([item])


def test_main_filters_snapshot(tmp_path: Path, quiet_app, capsys):
    source = tmp_path / "home.html"
    source.write_text(PAGE, encoding="utf-8")
    output = tmp_path / "filtered.html"

    rc = app.main([str(source), "--url", "https://www.youtube.com/", "-o", str(output), *base_args(tmp_path)])

    assert rc == 0
    out = capsys.readouterr().out
    assert "site=youtube" in out
    assert "removed=1" in out
    filtered = output.read_text(encoding="utf-8")
    assert "/shorts/abc" not in filtered
    assert "/watch?v=xyz" in filtered


def test_main_overrides_apply_to_run_only(tmp_path: Path, quiet_app, capsys):
    source = tmp_path / "home.html"
    source.write_text(PAGE, encoding="utf-8")

    rc = app.main(
        [str(source), "--url", "https://www.youtube.com/", "--set", "blockYouTubeShorts=off", *base_args(tmp_path)]
    )

    assert rc == 0
    assert "removed=0" in capsys.readouterr().out
    assert not (tmp_path / "settings.json").exists()


def test_main_blocked_url_redirects_after_settle(tmp_path: Path, quiet_app, capsys):
    source = tmp_path / "short.html"
    source.write_text(PAGE, encoding="utf-8")

    rc = app.main(
        [str(source), "--url", "https://www.youtube.com/shorts/abc", "--settle", "6", *base_args(tmp_path)]
    )

    assert rc == 0
    out = capsys.readouterr().out
    assert "overlay=redirected" in out
    assert "url=https://www.youtube.com/" in out


def test_rules_load_warning_reaches_engine_state(tmp_path: Path, quiet_app, capsys):
    source = tmp_path / "home.html"
    source.write_text(PAGE, encoding="utf-8")
    consume_load_warnings()
    (tmp_path / "block_rules.json").write_text("{not json", encoding="utf-8")

    rc = app.main([str(source), "--url", "https://www.youtube.com/", *base_args(tmp_path)])

    assert rc == 0
    captured = capsys.readouterr()
    assert "removed=1" in captured.out
    assert "last_error=block_rules.json is corrupted" in captured.err


def test_main_dump_settings_reads_store(tmp_path: Path, quiet_app, capsys):
    (tmp_path / "settings.json").write_text(json.dumps({"blockInstagramReels": False}), encoding="utf-8")

    rc = app.main(["--dump-settings", "--set", "blockInstagramCompletely=yes", *base_args(tmp_path)])

    assert rc == 0
    dumped = json.loads(capsys.readouterr().out)
    assert dumped["blockInstagramReels"] is False
    assert dumped["blockInstagramCompletely"] is True
    assert dumped["blockYouTubeShorts"] is True
    assert json.loads((tmp_path / "settings.json").read_text(encoding="utf-8")) == {"blockInstagramReels": False}


def test_main_usage_errors(tmp_path: Path, quiet_app, capsys):
    assert app.main(["--set", "bogus=1", *base_args(tmp_path)]) == 2
    assert app.main([*base_args(tmp_path)]) == 2
    missing = tmp_path / "missing.html"
    assert app.main([str(missing), "--url", "https://www.youtube.com/", *base_args(tmp_path)]) == 1
    err = capsys.readouterr().err
    assert "unknown setting" in err
    assert "cannot read" in err


def test_self_check_reports_summary(monkeypatch, capsys):
    monkeypatch.setattr(app, "_check_appdata_writable", lambda: (True, "writable"))
    monkeypatch.setattr(app, "_check_rules_load", lambda: (True, "rules ok"))

    assert app.main(["--self-check"]) == 0
    out = capsys.readouterr().out
    assert "[OK] HTML parser import" in out
    assert "Summary: 3/3 checks passed" in out

    monkeypatch.setattr(app, "_check_rules_load", lambda: (False, "block_rules.json is corrupted"))
    assert app.main(["--self-check"]) == 1
    out = capsys.readouterr().out
    assert "[FAIL] block rules load" in out


def test_setup_logging_writes_file(tmp_path: Path):
    log_file = tmp_path / "logs" / "shorts_blocker.log"
    logger = setup_logging("DEBUG", str(log_file))
    try:
        assert logger.name == LOGGER_NAME
        assert len(logger.handlers) == 2
        get_logger("Test").info("hello")
        for handler in logger.handlers:
            handler.flush()
        assert "hello" in log_file.read_text(encoding="utf-8")

        again = setup_logging("INFO", None)
        assert again is logger
        assert len(again.handlers) == 1
    finally:
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()


def test_parse_level_falls_back_on_unknown_names():
    assert parse_level("debug") == logging.DEBUG
    assert parse_level(" Warning ") == logging.WARNING
    assert parse_level("loud") == logging.INFO
    assert parse_level(None, default=logging.ERROR) == logging.ERROR
