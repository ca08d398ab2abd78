"""Tests for the command line entry point in src/main.py."""
import json
from contextlib import contextmanager
import pytest
import pandas as pd

import frailty_mm.tracking as tracking

from frailty_mm.config import PathConfig
from frailty_mm.simulate import simulate_cluster, simulate_recurrent
from main import main, prepare_data, run_pipeline


@pytest.fixture
def cluster_csv(tmp_path, cluster_df):
    path = tmp_path / "cluster.csv"
    cluster_df.to_csv(path, index=False)
    return str(path)


class TestPrepareData:
    """Tests for the topology dispatcher."""

    def test_cluster(self, cluster_df):
        data = prepare_data(cluster_df, "cluster", group_col="cluster")
        assert data.n_groups == 40

    def test_multi_event(self, multi_event_df):
        data = prepare_data(multi_event_df, "multi-event", group_col="subject",
                            event_id_col="event")
        assert data.topology.value == "Multi-event"

    def test_multi_event_requires_event_column(self, multi_event_df):
        with pytest.raises(ValueError, match="event id"):
            prepare_data(multi_event_df, "multi-event")

    def test_recurrent_requires_subject_column(self, recurrent_df):
        with pytest.raises(ValueError, match="subject id"):
            prepare_data(recurrent_df, "recurrent", time_col="stop")


class TestRunPipeline:
    """Tests for run_pipeline function."""

    def test_writes_outputs(self, tmp_path, cluster_csv):
        outputs = tmp_path / "outputs"
        config = PathConfig(penalty="MCP", tune=[0.05, 0.2], maxit=100)

        code = run_pipeline(cluster_csv, topology="cluster", group_col="cluster",
                            config=config, output_base=str(outputs))

        assert code == 0
        artifacts = outputs / "sample" / "artifacts"
        summaries = list(artifacts.glob("gamma_mcp_*_summary.csv"))
        assert len(summaries) == 1
        assert len(pd.read_csv(summaries[0])) >= 1
        assert len(list(artifacts.glob("gamma_mcp_*_coef.csv"))) == 1

        configs = list((outputs / "sample" / "configs").glob("*.json"))
        assert json.loads(configs[0].read_text())["penalty"] == "MCP"
        assert list((outputs / "sample" / "logs").glob("main_*.log"))

    def test_tracking_uses_run_directory(self, tmp_path, monkeypatch, cluster_csv):
        runs = []

        @contextmanager
        def fake_run(run_name, tags=None, tracking_dir=None):
            runs.append((run_name, tracking_dir))
            yield

        monkeypatch.setattr(tracking, "start_run", fake_run)
        monkeypatch.setattr(tracking, "log_path_result", lambda result, logger=None: True)
        monkeypatch.setattr(tracking, "safe_log_artifact", lambda path, logger=None: True)
        outputs = tmp_path / "outputs"

        code = run_pipeline(cluster_csv, group_col="cluster", track=True,
                            config=PathConfig(tune=[0.1], maxit=50),
                            output_base=str(outputs))

        assert code == 0
        assert len(runs) == 1
        assert runs[0][1] == str(outputs / "sample" / "mlruns")

    def test_recurrent(self, tmp_path):
        path = tmp_path / "recurrent.csv"
        simulate_recurrent([0.5, 0.0], n_subjects=25, seed=9).to_csv(path, index=False)

        code = run_pipeline(str(path), topology="recurrent", time_col="stop",
                            group_col="id", start_col="start",
                            config=PathConfig(tune=[0.1], maxit=50),
                            output_base=str(tmp_path / "outputs"))
        assert code == 0

    def test_missing_file(self, tmp_path):
        code = run_pipeline(str(tmp_path / "missing.csv"), output_base=str(tmp_path / "outputs"))
        assert code == 1

    def test_invalid_data(self, tmp_path):
        path = tmp_path / "tiny.csv"
        simulate_cluster([0.5], n_clusters=1, cluster_size=2, seed=0).to_csv(path, index=False)

        code = run_pipeline(str(path), group_col="cluster", output_base=str(tmp_path / "outputs"))
        assert code == 1


class TestMain:
    """Tests for argument parsing in main()."""

    def test_invalid_frailty(self, cluster_csv):
        assert main(["--input", cluster_csv, "--frailty", "weibull"]) == 1

    def test_pvf_without_power(self, cluster_csv):
        assert main(["--input", cluster_csv, "--frailty", "pvf"]) == 1

    def test_cli_run(self, tmp_path, monkeypatch, cluster_csv):
        monkeypatch.chdir(tmp_path)

        code = main(["--input", cluster_csv, "--group-col", "cluster",
                     "--penalty", "scad", "--tune", "0.2", "0.05", "--maxit", "50"])

        assert code == 0
        configs = list((tmp_path / "data" / "outputs" / "sample" / "configs").glob("*.json"))
        saved = PathConfig.load(str(configs[0]))
        assert saved.gam == 3.7
        assert saved.tune == (0.05, 0.2)

    def test_config_file_overrides(self, tmp_path, monkeypatch, cluster_csv):
        monkeypatch.chdir(tmp_path)
        PathConfig(penalty="MCP", gam=5.0, tune=[0.1], maxit=50).save("base.json")

        code = main(["--input", cluster_csv, "--group-col", "cluster",
                     "--config", "base.json", "--independent"])

        assert code == 0
        configs = list((tmp_path / "data" / "outputs" / "sample" / "configs").glob("*.json"))
        saved = PathConfig.load(str(configs[0]))
        assert saved.gam == 5.0
        assert not saved.warm_start
