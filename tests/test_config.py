"""Settings from the environment and the brand profile."""

import pytest

from blogflow.config import BrandProfile, Settings, load_brand


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    monkeypatch.setenv("LLM_MAX_RETRIES", "5")
    monkeypatch.setenv("LLM_MIN_INTERVAL", "0.5")
    monkeypatch.setenv("BLOGFLOW_STORE", "sqlite:///runs.db")
    monkeypatch.delenv("BLOGFLOW_BRAND", raising=False)
    s = Settings.from_env()
    assert s.provider == "openai"
    assert s.max_retries == 5
    assert s.min_interval == 0.5
    assert s.store_url == "sqlite:///runs.db"
    assert s.brand_path is None


def test_settings_defaults(monkeypatch):
    for name in ("LLM_INITIAL_WAIT", "LLM_MAX_WAIT", "BLOGFLOW_STORE", "BLOGFLOW_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    s = Settings.from_env()
    assert s.provider == "anthropic"
    assert s.max_retries == 3
    assert (s.initial_wait, s.max_wait) == (1.0, 30.0)
    assert s.store_url == "blogflow_runs"


def test_brand_from_yaml(tmp_path):
    path = tmp_path / "brand.yaml"
    path.write_text(
        "name: Vegas Improv Power\n"
        "tagline: Improv skills for real life\n"
        "voice: warm\n"
        "audiences:\n  - professionals\n  - teams\n"
        "colour: purple\n"
    )
    brand = BrandProfile.from_yaml(path)
    assert brand.name == "Vegas Improv Power"
    assert brand.voice == ("warm",)
    assert brand.audiences == ("professionals", "teams")
    text = brand.render()
    assert text.splitlines()[0] == "BRAND: Vegas Improv Power"
    assert "AUDIENCES: professionals, teams" in text
    assert "MISSION" not in text


def test_brand_yaml_must_be_mapping(tmp_path):
    path = tmp_path / "brand.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError, match="mapping"):
        BrandProfile.from_yaml(path)


def test_load_brand_sources(tmp_path, monkeypatch):
    monkeypatch.delenv("BLOGFLOW_BRAND", raising=False)
    assert load_brand() == BrandProfile()
    path = tmp_path / "env-brand.yaml"
    path.write_text("name: From Env\n")
    monkeypatch.setenv("BLOGFLOW_BRAND", str(path))
    assert load_brand().name == "From Env"
