from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List

class Settings(BaseSettings):
    redis_url: str = "redis://localhost:6379/0"
    github_webhook_secret: str = ""
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Step list used for pushes to repos without a pipeline file
    default_steps: str = "fetch,build,test"
    webhook_clone: bool = True

    # Refuse a deploy while another is pending or running in the same environment
    serialize_deploys: bool = False

    @property
    def default_step_names(self) -> List[str]:
        return [name.strip() for name in self.default_steps.split(",") if name.strip()]

    class Config:
        env_file = ".env"

@lru_cache()
def get_settings() -> Settings:
    return Settings()
