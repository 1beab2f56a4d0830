from roam_sync.config import get_config_file, get_config_value, get_env_or_config, init_config_file


def test_get_env_or_config_respects_roam_config_file(tmp_path, monkeypatch):
    cfg = tmp_path / "custom.toml"
    cfg.write_text(
        """
[batch]
size = 25
max_retries = 5
""".strip(),
        encoding="utf-8",
    )

    monkeypatch.setenv("ROAM_CONFIG_FILE", str(cfg))
    monkeypatch.delenv("BATCH_SIZE", raising=False)
    assert get_config_file() == cfg
    assert get_env_or_config("BATCH_SIZE", "batch.size") == 25
    assert str(get_env_or_config("MAX_RETRIES", "batch.max_retries")) == "5"


def test_env_takes_precedence_over_config_file(tmp_path, monkeypatch):
    cfg = tmp_path / "custom.toml"
    cfg.write_text('[roam]\napi_graph = "from-file"\n', encoding="utf-8")

    monkeypatch.setenv("ROAM_CONFIG_FILE", str(cfg))
    monkeypatch.setenv("ROAM_API_GRAPH", "from-env")
    assert get_env_or_config("ROAM_API_GRAPH", "roam.api_graph") == "from-env"


def test_missing_config_file_falls_back_to_default(tmp_path, monkeypatch):
    monkeypatch.setenv("ROAM_CONFIG_FILE", str(tmp_path / "missing.toml"))
    monkeypatch.delenv("ROAM_STORAGE_DIR", raising=False)

    assert get_env_or_config("ROAM_STORAGE_DIR", "storage.dir") is None
    assert get_config_value("batch.size", 100) == 100


def test_init_config_file_writes_commented_template(tmp_path, monkeypatch):
    cfg = tmp_path / "nested" / "config.toml"
    monkeypatch.setenv("ROAM_CONFIG_FILE", str(cfg))

    assert init_config_file() == cfg
    assert "[batch]" in cfg.read_text(encoding="utf-8")
    # Every key is commented out, so nothing resolves yet.
    assert get_config_value("batch.size") is None
