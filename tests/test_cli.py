from pulsenet import cli
from pulsenet.cli import main, overrides_from_args, parse_args


def test_only_explicit_flags_become_overrides():
    args = parse_args(["-n", "5", "-p", "22,80", "-s"])
    assert overrides_from_args(args) == {"count": 5, "ports": "22,80", "simulate": True}
    assert overrides_from_args(parse_args([])) == {}


def test_long_flags():
    args = parse_args(["--timeout", "900", "--workers", "3", "--rate", "10", "--cidr", "10.0.0.0/30",
                       "--json", "--quiet", "--fan-out", "16", "--clean-output", "x.txt"])
    o = overrides_from_args(args)
    assert o["timeout_ms"] == 900
    assert o["workers"] == 3
    assert o["rate"] == 10
    assert o["cidr"] == "10.0.0.0/30"
    assert o["json"] is True and o["quiet"] is True
    assert o["fan_out"] == 16
    assert o["clean_output"] == "x.txt"


def test_simulated_run_writes_no_files(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    assert main(["-s", "-n", "15", "-r", "1000", "-w", "15"]) == 0
    assert not (tmp_path / "pulse_results.log").exists()
    assert not (tmp_path / "found_ips.txt").exists()
    out = capsys.readouterr().out
    assert "SCAN CONFIGURATION" in out
    assert "SCAN COMPLETED" in out


def test_quiet_run_prints_nothing(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    assert main(["-s", "-q", "-n", "5", "-r", "1000"]) == 0
    assert capsys.readouterr().out == ""


def test_zero_rate_is_fatal(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    assert main(["-s", "-q", "-r", "0"]) == 1
    assert "rate" in capsys.readouterr().err


def test_missing_config_file_is_fatal(tmp_path, capsys):
    assert main(["-q", "--config", str(tmp_path / "absent.yaml")]) == 1
    assert "config file not found" in capsys.readouterr().err


def test_unwritable_output_stops_before_probing(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    rc = main(["-q", "-C", "192.0.2.0/30", "-o", str(tmp_path / "missing" / "log.txt")])
    assert rc == 1
    assert "Cannot open output" in capsys.readouterr().err


def test_config_file_values_used_and_flags_win(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "pulsenet.yaml").write_text("simulate: true\ncount: 3\nrate: 0\n")
    # file alone is invalid (rate 0); the explicit flag repairs it
    assert main(["-q"]) == 1
    assert main(["-q", "-r", "1000"]) == 0


def test_write_failure_mid_scan_reports_its_own_error(tmp_path, monkeypatch, capsys):
    async def disk_full(*args, **kwargs):
        raise OSError(28, "No space left on device")

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "run_scan", disk_full)
    assert main(["-q", "-C", "192.0.2.0/30"]) == 1
    err = capsys.readouterr().err
    assert "No space left on device" in err
    assert "Cannot open output" not in err
    assert (tmp_path / "pulse_results.log").exists()
