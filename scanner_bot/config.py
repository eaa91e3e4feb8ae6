from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    # Discord
    DISCORD_BOT_TOKEN: str = Field(..., description="Discord bot token")
    LOG_LEVEL: str = "INFO"

    # Threat intelligence
    VIRUSTOTAL_API_KEY: str = ""
    IPQS_API_KEY: str = ""

    # Support forum
    FORUM_CHANNEL_ID: str = "1349920447957045329"
    SOLVED_TAG_ID: str = "1349920578987102250"
    WAITING_REPLY_TAG_ID: str = "1351244087642292295"
    MODERATOR_ROLE_ID: str = "1022899638140928022"
    SOLVED_COMMAND_MENTION: str = "/solved"
    UNSOLVED_COMMAND_MENTION: str = "/unsolved"
    FORUM_DB_PATH: str = "forum.db"

    # Weather (defaults to San Francisco)
    WEATHER_LATITUDE: float = 37.7749
    WEATHER_LONGITUDE: float = -122.4194
    WEATHER_USER_AGENT: str = "(DiscordBot, scanner-bot)"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()  # singleton
