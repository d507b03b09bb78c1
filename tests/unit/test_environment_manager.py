"""
Unit tests for environment merging.
"""
from devtopo.MANAGERS.environment_manager import EnvironmentManager


class TestEnvironmentManager:
    """Tests for EnvironmentManager."""

    def test_explicit_values_win(self, tmp_path):
        (tmp_path / "base.env").write_text("A=1\nB=2\n# comment\nexport C=3\n")
        (tmp_path / "override.env").write_text("B=20\n")
        manager = EnvironmentManager(str(tmp_path))
        env = manager.get_merged_environment({"A": "explicit"}, ["base.env", "override.env"])
        assert env == {"A": "explicit", "B": "20", "C": "3"}

    def test_missing_file_is_skipped(self, tmp_path):
        manager = EnvironmentManager(str(tmp_path))
        assert manager.get_merged_environment({"X": "1"}, ["nope.env"]) == {"X": "1"}

    def test_host_environment_not_inherited(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DEVTOPO_SECRET_FROM_HOST", "leak")
        env = EnvironmentManager(str(tmp_path)).get_merged_environment({}, [])
        assert env == {}

    def test_absolute_paths(self, tmp_path):
        env_file = tmp_path / "abs.env"
        env_file.write_text("K=v\n")
        env = EnvironmentManager("/somewhere/else").get_merged_environment({}, [str(env_file)])
        assert env == {"K": "v"}
