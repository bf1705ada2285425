"""Tests for KegupLogger console, JSON and file output."""

import json

from kegup.modules.kegup_logger import KegupLogger


def test_levels_and_quiet(console, output):
    log = KegupLogger(module="t-quiet", console=console)
    log.info("evt.info", "hello [not markup]")
    log.warning("evt.warn", "careful")
    log.debug("evt.debug", "hidden")
    log.set_quiet(True)
    log.info("evt.info", "suppressed")
    log.heading("also suppressed")
    log.error("evt.err", "still shown")
    text = output()
    assert "hello [not markup]" in text
    assert "Warning: careful" in text
    assert "hidden" not in text
    assert "suppressed" not in text
    assert "Error: still shown" in text


def test_verbose_shows_debug_and_meta(console, output):
    log = KegupLogger(module="t-verbose", console=console, verbose=True)
    log.debug("evt.debug", "details", package="a")
    assert 'details {"package": "a"}' in output()


def test_json_lines_go_to_stderr(console, output, capsys):
    log = KegupLogger(module="t-json", console=console, json_out=True)
    log.warning("outdated.pinned", "Not upgrading", pinned=["b"])
    log.echo("plain text")
    lines = capsys.readouterr().err.splitlines()
    assert len(lines) == 1
    line = json.loads(lines[0])
    assert line["event"] == "outdated.pinned"
    assert line["level"] == "WARNING"
    assert line["meta"] == {"pinned": ["b"]}
    assert output() == ""


def test_no_stray_stderr_without_log_dir(console, output, capsys):
    log = KegupLogger(module="t-stderr", console=console)
    log.warning("evt.warn", "careful", package="a")
    log.error("evt.err", "broken")
    assert capsys.readouterr().err == ""
    assert output().count("careful") == 1


def test_log_files(tmp_path, console):
    log = KegupLogger(module="t-files", console=console, log_dir=str(tmp_path / "logs"))
    log.info("evt.info", "to file")
    log.error("evt.err", "broken", exc=ValueError("bad"))
    log.flush()
    assert "evt.info: to file" in log.log_path.read_text()
    errors = log.error_log_path.read_text()
    assert "evt.err: broken" in errors
    assert "evt.info" not in errors


def test_perf_timer_metrics(console):
    log = KegupLogger(module="t-perf", console=console)

    @log.perf_timer("work")
    def work(x):
        return x * 2

    assert work(2) == 4
    work(3)
    assert log.get_metrics()["work"]["count"] == 2


def test_from_config(cfg, console, output):
    cfg.set("output.quiet", True)
    log = KegupLogger.from_config(cfg, module="t-cfg", console=console)
    assert log.quiet
    assert log.log_path is None
    log.info("evt", "nope")
    assert output() == ""
