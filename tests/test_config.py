import os
import sys

import pytest

sys.path.insert(0, os.path.abspath("src"))

from tapstore.config import DEFAULT_EMAIL_API_BASE_URL, DEFAULT_EMAIL_API_TIMEOUT, load_settings

KEYS = ("TAPSTORE_DATA_DIR", "TAPSTORE_STORAGE_QUOTA", "EMAIL_API_BASE_URL", "EMAIL_API_TIMEOUT")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults_without_env_file(tmp_path):
    (tmp_path / "README.md").write_text("marker", encoding="utf-8")
    settings = load_settings(str(tmp_path))
    assert settings.data_dir == os.path.join(str(tmp_path), "var", "tapstore")
    assert settings.storage_quota is None
    assert settings.email_api_base_url == DEFAULT_EMAIL_API_BASE_URL
    assert settings.email_api_timeout == DEFAULT_EMAIL_API_TIMEOUT


def test_env_file_found_from_subdirectory(tmp_path):
    (tmp_path / ".env").write_text(
        "# comment\n"
        "TAPSTORE_DATA_DIR='/srv/tapstore'\n"
        "TAPSTORE_STORAGE_QUOTA=5000000\n"
        'EMAIL_API_BASE_URL="https://mail.example.test/"\n'
        "EMAIL_API_TIMEOUT=15\n",
        encoding="utf-8",
    )
    sub = tmp_path / "src" / "pkg"
    sub.mkdir(parents=True)

    settings = load_settings(str(sub))
    assert settings.data_dir == os.path.abspath("/srv/tapstore")
    assert settings.storage_quota == 5000000
    assert settings.email_api_base_url == "https://mail.example.test"
    assert settings.email_api_timeout == 15


def test_environment_wins_and_bad_numbers_fall_back(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("EMAIL_API_TIMEOUT=15\n", encoding="utf-8")
    monkeypatch.setenv("EMAIL_API_TIMEOUT", "soon")
    monkeypatch.setenv("TAPSTORE_STORAGE_QUOTA", "-1")
    settings = load_settings(str(tmp_path))
    assert settings.email_api_timeout == DEFAULT_EMAIL_API_TIMEOUT
    assert settings.storage_quota is None
