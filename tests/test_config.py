"""Tests for campus_concierge/config.py."""

from pathlib import Path

from campus_concierge.config import BUNDLED_DATA_DIR, Settings


class TestDataPaths:
    """Bundled datasets resolve without a source checkout."""

    def test_bundled_data_lives_in_package(self):
        import campus_concierge

        assert BUNDLED_DATA_DIR == Path(campus_concierge.__file__).parent / "data"
        assert (BUNDLED_DATA_DIR / "campus_data.json").is_file()
        assert (BUNDLED_DATA_DIR / "student_support_eval_set.yaml").is_file()

    def test_defaults_resolve_to_bundled_files(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("KNOWLEDGE_BASE_PATH", raising=False)
        monkeypatch.delenv("EVAL_SET_PATH", raising=False)
        cfg = Settings(_env_file=None)
        assert cfg.resolve_path(cfg.knowledge_base_path).is_file()
        assert cfg.resolve_path(cfg.eval_set_path).is_file()

    def test_relative_path_uses_working_directory(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        cfg = Settings(_env_file=None, knowledge_base_path=Path("campus.json"))
        assert cfg.resolve_path(cfg.knowledge_base_path) == tmp_path / "campus.json"

    def test_env_override(self, monkeypatch, tmp_path):
        target = tmp_path / "other.json"
        monkeypatch.setenv("KNOWLEDGE_BASE_PATH", str(target))
        cfg = Settings(_env_file=None)
        assert cfg.resolve_path(cfg.knowledge_base_path) == target
