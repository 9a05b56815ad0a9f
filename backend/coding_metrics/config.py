import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    github_token: Optional[str] = Field(None, alias="GITHUB_TOKEN")
    github_graphql_url: str = Field("https://api.github.com/graphql", alias="CODEMETRICS_GITHUB_GRAPHQL_URL")
    leetcode_graphql_url: str = Field("https://leetcode.com/graphql", alias="CODEMETRICS_LEETCODE_GRAPHQL_URL")
    codeforces_api_url: str = Field("https://codeforces.com/api", alias="CODEMETRICS_CODEFORCES_API_URL")
    codechef_base_url: str = Field("https://www.codechef.com", alias="CODEMETRICS_CODECHEF_BASE_URL")

    ttl_github_seconds: int = Field(60 * 60, ge=0, alias="CODEMETRICS_TTL_GITHUB_SECONDS")
    ttl_leetcode_seconds: int = Field(30 * 60, ge=0, alias="CODEMETRICS_TTL_LEETCODE_SECONDS")
    ttl_codeforces_seconds: int = Field(5 * 60, ge=0, alias="CODEMETRICS_TTL_CODEFORCES_SECONDS")
    ttl_codechef_seconds: int = Field(3 * 60 * 60, ge=0, alias="CODEMETRICS_TTL_CODECHEF_SECONDS")

    github_timeout_seconds: float = Field(10.0, gt=0, alias="CODEMETRICS_GITHUB_TIMEOUT_SECONDS")
    leetcode_timeout_seconds: float = Field(8.0, gt=0, alias="CODEMETRICS_LEETCODE_TIMEOUT_SECONDS")
    codeforces_timeout_seconds: float = Field(6.0, gt=0, alias="CODEMETRICS_CODEFORCES_TIMEOUT_SECONDS")
    codechef_timeout_seconds: float = Field(10.0, gt=0, alias="CODEMETRICS_CODECHEF_TIMEOUT_SECONDS")

    http_max_retries: int = Field(1, ge=0, le=2, alias="CODEMETRICS_HTTP_MAX_RETRIES")
    http_retry_delay_seconds: float = Field(1.0, ge=0, alias="CODEMETRICS_HTTP_RETRY_DELAY_SECONDS")
    codechef_retry_delay_seconds: float = Field(2.5, ge=0, alias="CODEMETRICS_CODECHEF_RETRY_DELAY_SECONDS")

    contribution_weight_commits: int = Field(2, ge=0, alias="CODEMETRICS_WEIGHT_COMMITS")
    contribution_weight_pull_requests: int = Field(5, ge=0, alias="CODEMETRICS_WEIGHT_PULL_REQUESTS")
    contribution_weight_issues: int = Field(3, ge=0, alias="CODEMETRICS_WEIGHT_ISSUES")
    contribution_weight_reviews: int = Field(4, ge=0, alias="CODEMETRICS_WEIGHT_REVIEWS")

    database_url: Optional[str] = Field(None, alias="CODEMETRICS_DATABASE_URL")
    database_pool_size: int = Field(10, alias="CODEMETRICS_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="CODEMETRICS_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="CODEMETRICS_DATABASE_ECHO")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
