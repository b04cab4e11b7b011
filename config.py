import json
import os
from pydantic_settings import BaseSettings

CONFIG_FILE = os.environ.get("CONFIG_FILE", "/config/settings.json")


class Settings(BaseSettings):
    suggest_url: str = "https://suggestqueries.google.com/complete/search"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
    )
    ytdlp_path: str = "yt-dlp"

    search_limit: int = 15
    cache_capacity: int = 100

    suggest_timeout_s: float = 3.0
    search_timeout_s: float = 30.0
    resolve_timeout_s: float = 30.0
    stream_chunk_size: int = 64 * 1024

    download_dir: str = "./downloads"
    state_file: str = "./state.json"
    public_base_url: str = "http://localhost:3001"
    recent_search_limit: int = 10

    log_file: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


def load_saved_config() -> dict:
    """Load saved config from JSON file."""
    if os.path.exists(CONFIG_FILE):
        try:
            with open(CONFIG_FILE, "r") as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError):
            pass
    return {}


def get_settings() -> Settings:
    """Get settings, merging env vars with saved config."""
    saved = load_saved_config()
    # Env vars take priority over saved config
    settings = Settings()

    # Anything still at its default can come from the saved file
    for name, field in Settings.model_fields.items():
        if name in saved and getattr(settings, name) == field.default:
            setattr(settings, name, saved[name])

    return settings
