from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # JSON array of camera records, see sources.SourceConfig
    sources_file: str = "info.json"

    # External tools
    ffmpeg_bin: str = "ffmpeg"                      # resolved on PATH
    relay_script: str = "./install-mediamtx.sh"     # started once if any camera relays

    log_level: str = "INFO"
