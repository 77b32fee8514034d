# Test Configuration - Settings for live provider smoke tests.
from pydantic_settings import BaseSettings

class TestSettings(BaseSettings):
    """Runtime configuration for live gateway tests."""
    # Credentials; live tests skip themselves when these are empty
    OPENROUTER_API_KEY: str = ""
    PERPLEXITY_API_KEY: str = ""

    # Small, cheap model for smoke checks
    LIVE_TEST_MODEL: str = "google/gemini-2.5-flash"
    LIVE_TEST_MAX_ROUNDS: int = 1

    # Provider Logic (Options: 'openrouter', 'openai', 'local')
    LIVE_TEST_PROVIDER: str = "openrouter"
    LOCAL_LLM_URL: str = "http://host.docker.internal:12434"

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = TestSettings()
