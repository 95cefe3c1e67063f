from lecture_live.core.config import Settings


def test_gemini_key_aliases_and_provider(monkeypatch) -> None:
    for name in ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY", "GROQ_API_KEY"):
        monkeypatch.delenv(name, raising=False)

    monkeypatch.setenv("API_KEY", "legacy-key")
    settings = Settings()
    assert settings.gemini_api_key == "legacy-key"
    assert settings.has_gemini
    assert settings.llm_provider == "gemini"

    assert Settings(gemini_api_key="", groq_api_key="g").llm_provider == "groq"
    assert Settings(gemini_api_key="", groq_api_key="").llm_provider == "none"


def test_timers_and_database_url_defaults() -> None:
    settings = Settings(database_url="postgres://u:p@db/lectures", cors_origins=" http://a.test, ,http://b.test ")

    assert settings.session_save_debounce_ms == 2000
    assert settings.slide_select_debounce_ms == 200
    assert settings.auto_mute_delay_ms == 1500
    assert settings.notification_ttl_ms == 5000
    assert settings.database_url.startswith("postgresql://")
    assert settings.cors_origin_list == ["http://a.test", "http://b.test"]
