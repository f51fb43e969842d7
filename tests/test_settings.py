import json

from settings import default_settings, load_settings, save_settings, whisper_options


def test_missing_file_gives_defaults(tmp_path):
    settings = load_settings(default_settings(), str(tmp_path / "nope.json"))
    assert settings["samplerate"] == 16000
    assert settings["level_interval_ms"] == 50


def test_file_overrides_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"model_name": "small.en", "scoring_retries": 5}))
    settings = load_settings(default_settings(), str(path))
    assert settings["model_name"] == "small.en"
    assert settings["scoring_retries"] == 5
    assert settings["final_timeout"] == 10.0


def test_unreadable_file_falls_back(tmp_path, caplog):
    path = tmp_path / "settings.json"
    path.write_text("{not json")
    settings = load_settings(default_settings(), str(path))
    assert settings == default_settings()
    assert "Ignoring unreadable settings file" in caplog.text

    path.write_text("[1, 2]")
    assert load_settings(default_settings(), str(path)) == default_settings()


def test_save_round_trip(tmp_path):
    path = str(tmp_path / "settings.json")
    settings = dict(default_settings(), preset="fast_cpu")
    save_settings(settings, path)
    assert load_settings(default_settings(), path)["preset"] == "fast_cpu"


def test_env_seeds_defaults(monkeypatch):
    monkeypatch.setenv("SCORING_API_URL", "https://score.example")
    monkeypatch.setenv("WHISPER_MODEL", "tiny.en")
    settings = default_settings()
    assert settings["scoring_url"] == "https://score.example"
    assert settings["model_name"] == "tiny.en"


def test_whisper_options_presets():
    opts = whisper_options(dict(default_settings(), device="cpu", preset="fast_cpu"))
    assert opts["fp16"] is False
    assert opts["beam_size"] == 1
    assert opts["word_timestamps"] is True
    assert opts["without_timestamps"] is False

    opts = whisper_options(dict(default_settings(), device="cpu", preset="accurate_gpu", language="auto"))
    assert opts["fp16"] is True
    assert opts["beam_size"] == 5
    assert opts["language"] is None

    opts = whisper_options(dict(default_settings(), device="gpu", preset="custom", word_timestamps=False))
    assert opts["fp16"] is True
    assert opts["without_timestamps"] is True
