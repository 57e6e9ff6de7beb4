"""Smoke test for the Card (1995) application script."""

import importlib.util
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parents[1] / "applications" / "card_late" / "analysis.py"


@pytest.fixture(scope="module")
def analysis():
    mod_spec = importlib.util.spec_from_file_location("card_analysis", SCRIPT)
    module = importlib.util.module_from_spec(mod_spec)
    mod_spec.loader.exec_module(module)
    return module


def test_simulated_extract_shape(analysis):
    df = analysis.simulate_card_data(n=500, seed=1)
    assert len(df) == 500
    assert set(analysis.COVARIATES) <= set(df.columns)
    assert set(df["nearc4"].unique()) <= {0, 1}


def test_main_runs(analysis, capsys):
    assert analysis.main(["--n-boot", "20", "--seed", "52"]) == 0
    out = capsys.readouterr().out
    assert "[IPSW]" in out
    assert "tau_u" in out


def test_main_reads_csv(analysis, tmp_path, capsys):
    path = tmp_path / "card.csv"
    df = analysis.simulate_card_data(n=800, seed=2).drop(columns=["expersq", "college"])
    df.to_csv(path, index=False)
    assert analysis.main(["--data", str(path), "--n-boot", "10"]) == 0
    assert "card.csv" in capsys.readouterr().out
