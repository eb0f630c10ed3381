from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # Basic settings
    PROJECT_NAME: str = "Solo Microblog ActivityPub Server"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # GraphQL settings (data service)
    GRAPHQL_ENDPOINT: str = "http://localhost:3000/api/graphql"
    GRAPHQL_TOKEN: Optional[str] = None
    # 使用記憶體儲存（測試與本地開發）
    GRAPHQL_MOCK: bool = False

    # ActivityPub settings
    ACTIVITYPUB_DOMAIN: str = "microblog.example"
    ACTIVITYPUB_PROTOCOL: str = "https"

    # Delivery settings
    FEDERATION_ENABLED: bool = True
    DELIVERY_TIMEOUT: float = 30.0
    DELIVERY_RETRIES: int = 2
    USER_AGENT: str = "solo-microblog-ap/1.0"

    # CORS settings
    ALLOWED_HOSTS: List[str] = ["*"]

    # Collections
    MAX_COLLECTION_ITEMS: int = 10000

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def base_url(self) -> str:
        return f"{self.ACTIVITYPUB_PROTOCOL}://{self.ACTIVITYPUB_DOMAIN}"

settings = Settings()
