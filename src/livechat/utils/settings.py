from dotenv import find_dotenv, load_dotenv
from pydantic_settings import BaseSettings

load_dotenv(find_dotenv(), override=True)


class Settings(BaseSettings):
    """Settings for the live chat server and client."""

    model_config = {
        "env_file": find_dotenv(),
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }

    MONGODB_URI: str = "mongodb://localhost:27017"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False


SETTINGS = Settings()
