"""Tests for main.py -- the command-line risk calculator."""

import json

import main


class TestCli:
    def test_json_output(self, capsys) -> None:
        assert main.main(["0.8", "8", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["risk_score"] == 64.0
        assert data["risk_level"] == "critical"
        assert "residual" not in data

    def test_json_with_residual(self, capsys) -> None:
        assert main.main(["0.8", "8", "--residual", "0.5", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["residual"]["risk_score"] == 24.0
        assert data["reduction"]["score"] == 40.0

    def test_terminal_output(self, capsys) -> None:
        assert main.main(["0.3", "5"]) == 0
        out = capsys.readouterr().out
        assert "ThreatMap -- Risk Calculation" in out
        assert "15.00 / 100" in out
        assert "MEDIUM" in out

    def test_invalid_input_exit_2(self, capsys) -> None:
        assert main.main(["0.5", "7.5"]) == 2
        out = capsys.readouterr().out
        assert "Invalid probability or impact values" in out
        assert "impact:" in out

    def test_residual_out_of_range(self, capsys) -> None:
        assert main.main(["0.5", "5", "--residual", "2"]) == 2
        assert "reduction_factor" in capsys.readouterr().out
