"""Tests for the cellqc command line: config handling and end-to-end runs."""

import json
from argparse import Namespace
from pathlib import Path

import numpy as np
import pytest

from cellqc.cli import main
from cellqc.cli.config import (
    explicit_args,
    load_config,
    merge_config_with_args,
    validate_config,
)
from cellqc.cli.qc import parse_control_prefix
from cellqc.io.writers import MANIFEST_NAME, read_bundle

from conftest import write_counts_csv


@pytest.fixture
def counts_path(synthetic_eset, tmp_path):
    return write_counts_csv(synthetic_eset, tmp_path / "counts.csv")


class TestConfig:

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "qc.yaml"
        path.write_text("mad_multiplier: 3\ncontrols:\n  ERCC: 'ERCC-'\n")
        config = load_config(path)
        assert config == {"mad_multiplier": 3, "controls": {"ERCC": "ERCC-"}}

    def test_load_json(self, tmp_path):
        path = tmp_path / "qc.json"
        path.write_text(json.dumps({"filtering": {"min_cells": 2}}))
        assert load_config(path)["filtering"]["min_cells"] == 2

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "qc.yml"
        path.write_text("")
        assert load_config(path) == {}

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "qc.toml"
        path.write_text("")
        with pytest.raises(ValueError, match="Unsupported"):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_validate_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="Unknown config keys"):
            validate_config({"madmultiplier": 3})
        with pytest.raises(ValueError, match="filtering"):
            validate_config({"filtering": {"min_cell": 3}})

    def test_validate_values(self):
        with pytest.raises(ValueError, match="mad_multiplier"):
            validate_config({"mad_multiplier": -1})
        with pytest.raises(ValueError, match="normalization method"):
            validate_config({"normalization": {"method": "tmm"}})
        with pytest.raises(ValueError, match="controls"):
            validate_config({"controls": ["ERCC-"]})
        validate_config({"mad_multiplier": 3, "filtering": {"enabled": True}})

    def test_explicit_args(self):
        explicit = explicit_args(["qc", "--mad-multiplier", "3", "--no-filter", "-o", "out"])
        assert explicit == {"mad_multiplier", "filter", "output"}

    def test_merge_priority(self):
        args = Namespace(mad_multiplier=3.0, min_cells=1, output=None, filter=False, control_prefix=None)
        config = {
            "mad_multiplier": 4,
            "output": "results",
            "filtering": {"enabled": True, "min_cells": 5},
        }
        merged = merge_config_with_args(config, args, ["qc", "--mad-multiplier", "3"])
        # explicit CLI wins, config beats defaults
        assert merged.mad_multiplier == 3.0
        assert merged.min_cells == 5
        assert merged.filter is True
        assert merged.output == Path("results")
        # input namespace untouched
        assert args.min_cells == 1

    def test_merge_controls(self):
        args = Namespace(control_prefix=[("MT", "mt-")])
        merged = merge_config_with_args({"controls": {"ERCC": "ERCC-", "MT": "MT-"}}, args, [])
        assert merged.control_prefix == {"ERCC": "ERCC-", "MT": "mt-"}

    def test_parse_control_prefix(self):
        assert parse_control_prefix("ERCC=ERCC-") == ("ERCC", "ERCC-")
        assert parse_control_prefix("MT-") == ("MT", "MT-")


class TestQCCommand:

    def test_writes_bundle_and_summary(self, counts_path, tmp_path):
        output = tmp_path / "qc"
        code = main(["qc", "--counts", str(counts_path), "--output", str(output),
                     "--control-prefix", "ERCC=ERCC-"])
        assert code == 0
        assert (output / MANIFEST_NAME).exists()

        summary = json.loads((output / "qc_summary.json").read_text())
        assert summary["n_cells"] == 60
        assert summary["filter_on_depth"] >= 3

        eset = read_bundle(output)
        assert eset.n_cells == 60
        assert "pct_reads_from_ERCC" in eset.cell_metadata.columns

    def test_filter_and_normalize(self, counts_path, tmp_path):
        output = tmp_path / "qc"
        code = main(["qc", "--counts", str(counts_path), "--output", str(output),
                     "--filter", "--min-cells", "2", "--normalize", "size_factor"])
        assert code == 0

        eset = read_bundle(output)
        assert eset.n_cells < 60
        assert not {"CELL_057", "CELL_058", "CELL_059"} & set(eset.cell_ids)
        assert "size_factor" in eset.cell_metadata.columns
        assert eset.provenance["exprs"]["method"] == "size_factor"

    def test_filtered_bundle_metrics_describe_remaining_cells(self, counts_path, tmp_path):
        output = tmp_path / "qc"
        assert main(["qc", "--counts", str(counts_path), "--output", str(output),
                     "--control-prefix", "ERCC=ERCC-", "--filter", "--min-cells", "2"]) == 0

        eset = read_bundle(output)
        detected = (eset.counts > 0).sum(axis=1)
        np.testing.assert_array_equal(eset.feature_metadata["n_cells_exprs"], detected)
        assert (detected >= 2).all()
        np.testing.assert_array_equal(eset.cell_metadata["depth"], eset.counts.sum(axis=0))
        assert eset.provenance["qc_metrics"]["controls"] == ["ERCC"]

    def test_config_file(self, counts_path, tmp_path):
        output = tmp_path / "from_config"
        config = tmp_path / "qc.yaml"
        config.write_text(
            f"counts: {counts_path}\n"
            f"output: {output}\n"
            "mad_multiplier: 4\n"
            "controls:\n  ERCC: 'ERCC-'\n"
            "filtering:\n  enabled: true\n"
        )
        assert main(["qc", "--config", str(config)]) == 0
        summary = json.loads((output / "qc_summary.json").read_text())
        assert summary["mad_multiplier"] == 4
        assert summary["n_cells_kept"] < 60

    def test_report(self, counts_path, tmp_path):
        output = tmp_path / "qc"
        assert main(["qc", "--counts", str(counts_path), "--output", str(output), "--report"]) == 0
        assert (output / "figures" / "report.html").exists()
        assert (output / "figures" / "depth.png").exists()

    def test_missing_counts(self, tmp_path, capsys):
        assert main(["qc", "--output", str(tmp_path)]) == 1
        assert "--counts is required" in capsys.readouterr().out

    def test_unreadable_input_returns_error(self, tmp_path, capsys):
        code = main(["qc", "--counts", str(tmp_path / "nope.csv"), "--output", str(tmp_path / "out")])
        assert code == 1
        assert "ERROR" in capsys.readouterr().err

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "cellqc" in capsys.readouterr().out


class TestDistancesAndVizCommands:

    def test_distances_then_viz(self, counts_path, tmp_path):
        bundle = tmp_path / "qc"
        assert main(["qc", "--counts", str(counts_path), "--output", str(bundle)]) == 0
        assert main(["distances", "--input", str(bundle), "--metric", "canberra"]) == 0

        eset = read_bundle(bundle)
        assert eset.cell_distances is not None
        assert eset.cell_distances.metric == "canberra"

        figures = tmp_path / "figures"
        assert main(["viz", "--input", str(bundle), "--output", str(figures),
                     "--dpi", "50", "--report"]) == 0
        assert (figures / "cell_distances.png").exists()
        assert (figures / "report.html").exists()
