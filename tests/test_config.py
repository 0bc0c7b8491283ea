"""Tests for YAML + environment configuration loading."""
from rewriter.config import Config, config_from_dict, load_config


def test_defaults():
    cfg = Config()
    assert cfg.openai.default_model == "gpt-5-2025-08-07"
    assert cfg.openai.max_completion_tokens == 4000
    assert cfg.relay.path == "/functions/v1/ai-rewrite-chat"
    assert cfg.store.backend == "sql"


def test_env_interpolation(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
    monkeypatch.delenv("STORE_BACKEND", raising=False)

    cfg = config_from_dict({
        "openai": {"api_key": "${OPENAI_API_KEY}", "max_completion_tokens": "${MAX_TOKENS:2048}"},
        "store": {"backend": "${STORE_BACKEND:supabase}"},
        "app": {"log_json": "${LOG_JSON:true}"},
    })

    assert cfg.openai.api_key == "sk-from-env"
    assert cfg.openai.max_completion_tokens == 2048
    assert cfg.store.backend == "supabase"
    assert cfg.app.log_json is True


def test_unknown_keys_are_ignored():
    cfg = config_from_dict({"relay": {"relay_timeout_seconds": 30, "surprise": 1}, "extra": {}})
    assert cfg.relay.relay_timeout_seconds == 30
    assert not hasattr(cfg.relay, "surprise")


def test_load_from_file(tmp_path, monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    path = tmp_path / "app.yaml"
    path.write_text(
        "supabase:\n"
        "  url: \"${SUPABASE_URL}\"\n"
        "auth:\n"
        "  verifier: jwt\n"
        "cors:\n"
        "  allow_origins: [\"https://dashboard.example.com\"]\n"
    )

    cfg = load_config(str(path), reload=True)

    assert cfg.supabase.url == "https://project.supabase.co"
    assert cfg.auth.verifier == "jwt"
    assert cfg.cors.allow_origins == ["https://dashboard.example.com"]
    assert load_config() is cfg


def test_missing_file_gives_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "absent.yaml"), reload=True)
    assert cfg.openai.base_url == "https://api.openai.com/v1"
