"""
Configuration settings for Feed Service
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Community Feed Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8005

    # Hosted backend platform (REST, RPC, auth, storage)
    BACKEND_URL: str = "http://localhost:54321"
    BACKEND_ANON_KEY: str = "anon-key-change-this"
    BACKEND_JWT_SECRET: str = "your-secret-key-change-this-in-production"
    JWT_ALGORITHM: str = "HS256"
    REQUEST_TIMEOUT: float = 15.0

    # Transactional email / push endpoints
    EMAIL_ENDPOINT_URL: str = "http://localhost:3000/api/email"
    PUSH_ENDPOINT_URL: str = "http://localhost:3000/api/push"

    # Kafka (realtime change events)
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:9092"
    KAFKA_ENABLED: bool = True
    KAFKA_CONSUMER_GROUP: str = "feed-service"
    REALTIME_TOPIC_PREFIX: str = "realtime"
    REALTIME_TABLES: List[str] = ["community_messages", "posts", "post_likes", "post_comments"]

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Pagination
    FEED_PAGE_SIZE: int = 20
    COMMUNITY_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    # Suggestions
    SUGGESTION_LIKES_LIMIT: int = 100
    SUGGESTION_TOP_N: int = 5
    SUGGESTED_PROFILES_LIMIT: int = 6
    FOLLOW_SCAN_LIMIT: int = 200
    SECOND_HOP_SCAN_LIMIT: int = 1000

    # Trending hashtags
    TRENDING_WINDOW_HOURS: int = 24
    TRENDING_SCAN_LIMIT: int = 500
    TRENDING_TOP_N: int = 10

    # Chat
    CHAT_HISTORY_LIMIT: int = 100

    # Counter resync (seconds)
    COUNT_RESYNC_INTERVAL: float = 60.0

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
