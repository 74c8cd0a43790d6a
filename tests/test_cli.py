from __future__ import annotations

import pytest

from astrosim.cli import build_parser, main


def test_gyro_command(capsys):
    assert main(["gyro", "--species", "electron", "--B", "1e-8"]) == 0
    out = capsys.readouterr().out
    assert "electron in B = 1e-08 T" in out
    assert "r_L" in out


def test_fieldline_command(capsys):
    assert main(["fieldline", "--degree", "1", "--theta0", "30"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("dipole field line")
    assert "apex      r = 4" in out


def test_fieldline_on_null_reports_error(capsys):
    assert main(["fieldline", "--degree", "2", "--theta0", "90"]) == 1
    assert "error" in capsys.readouterr().err


def test_stellar_defaults():
    args = build_parser().parse_args(["stellar"])
    assert args.mass == 100.0
    assert args.steps == 100
    assert not args.solve_temperature
    assert (args.tc_low, args.tc_high) == (1.0e7, 3.0e8)


def test_command_is_required():
    with pytest.raises(SystemExit):
        main([])


def test_gyro_without_field_reports_error(capsys):
    assert main(["gyro", "--B", "0"]) == 1
    assert "error" in capsys.readouterr().err


def test_stellar_command_at_fixed_temperature(capsys):
    assert main(["stellar", "--tc", "1.6e7"]) == 0
    captured = capsys.readouterr()
    assert "P_c = " in captured.out
    assert "warning" not in captured.err
