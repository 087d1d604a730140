"""Configuration handling for the feed processor."""

import os
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from feed_processor.models.enums import RetrievalOrder, SourceType


@dataclass
class QueryConfig:
    """Initial term lists per category."""

    flickr: List[str] = field(default_factory=list)
    twitter: List[str] = field(default_factory=list)
    news: List[str] = field(default_factory=list)
    facebook: List[str] = field(default_factory=list)

    def terms_for(self, source_type: SourceType) -> List[str]:
        return list(getattr(self, source_type.value))


@dataclass
class PollingConfig:
    """Steady-state poll intervals per category, in seconds."""

    flickr_interval_sec: float = 60.0
    twitter_interval_sec: float = 24.0
    news_interval_sec: float = 300.0
    facebook_interval_sec: float = 60.0

    def interval_for(self, source_type: SourceType) -> float:
        return float(getattr(self, f"{source_type.value}_interval_sec"))


@dataclass
class CacheConfig:
    """Aggregation cache sizing."""

    capacity: int = 10000
    purge_threshold_factor: float = 1.2


@dataclass
class FilteringConfig:
    """Profanity filter configuration."""

    profanity_enabled: bool = False
    profanity_words: List[str] = field(default_factory=list)


@dataclass
class RetrievalConfig:
    """Retrieval ordering and fairness."""

    order: RetrievalOrder = RetrievalOrder.CHRONOLOGICAL
    distribute_evenly: bool = True


@dataclass
class HttpConfig:
    """HTTP client configuration."""

    request_timeout_sec: float = 30.0
    connect_timeout_sec: float = 10.0
    user_agent: str = "feed_processor/0.1"
    # Minimum spacing between two requests to the same provider
    request_spacing_sec: float = 1.0
    min_remaining_calls: int = 1
    sleep_buffer_sec: float = 1.0
    # Streaming connections have no total timeout, only a read-idle timeout
    stream_read_timeout_sec: float = 90.0


@dataclass
class BackoffConfig:
    """Retry delay escalation after failed polls."""

    exponential_floor_sec: float = 10.0
    exponential_factor: float = 2.0
    exponential_ceiling_sec: float = 240.0
    linear_floor_sec: float = 0.25
    linear_step_sec: float = 0.25
    linear_ceiling_sec: float = 16.0
    # Upper bound for provider-requested Retry-After cooldowns
    retry_after_ceiling_sec: float = 900.0
    # Consecutive failures after which a source is logged as degraded
    failure_threshold: int = 5


@dataclass
class MonitoringConfig:
    """Monitoring configuration."""

    enable_prometheus: bool = False
    prometheus_port: int = 8000


@dataclass
class Config:
    """Application configuration combining environment variables and YAML config."""

    # Provider credentials from environment
    flickr_api_key: str = ""
    facebook_client_id: str = ""
    facebook_client_secret: str = ""
    twitter_username: str = ""
    twitter_password: str = ""

    # YAML config values with defaults
    queries: QueryConfig = field(default_factory=QueryConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    filtering: FilteringConfig = field(default_factory=FilteringConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    max_item_age_days: int = 30
    display_fb_content_from_others: bool = False
    twitter_use_streaming: bool = False

    @classmethod
    def from_files(cls, config_path: str, env_path: Optional[str] = None) -> "Config":
        """
        Load configuration from YAML file and environment variables.

        Args:
            config_path: Path to YAML configuration file
            env_path: Optional path to .env file (defaults to .env in current directory)

        Returns:
            Config instance with merged configuration
        """
        if env_path:
            load_dotenv(env_path)
        else:
            load_dotenv()

        config = cls()
        config.flickr_api_key = os.getenv("FLICKR_API_KEY", "")
        config.facebook_client_id = os.getenv("FACEBOOK_CLIENT_ID", "")
        config.facebook_client_secret = os.getenv("FACEBOOK_CLIENT_SECRET", "")
        config.twitter_username = os.getenv("TWITTER_USERNAME", "")
        config.twitter_password = os.getenv("TWITTER_PASSWORD", "")

        if os.path.exists(config_path):
            with open(config_path, "r", encoding="utf-8") as file:
                yaml_config = yaml.safe_load(file)
            if yaml_config:
                config.update_from_dict(yaml_config)

        return config

    def update_from_dict(self, values: Dict[str, Any]) -> None:
        """Merge a parsed YAML mapping into this config, section by section."""
        for key, value in values.items():
            if not hasattr(self, key):
                continue
            current = getattr(self, key)
            if is_dataclass(current) and isinstance(value, dict):
                _apply_section(current, value)
            else:
                setattr(self, key, value)

        if not isinstance(self.retrieval.order, RetrievalOrder):
            self.retrieval.order = RetrievalOrder(str(self.retrieval.order).lower())

    def validate(self) -> List[str]:
        """
        Validate configuration and return a list of validation errors.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if self.queries.flickr and not self.flickr_api_key:
            errors.append("Missing FLICKR_API_KEY in environment")
        if self.queries.facebook and not (self.facebook_client_id and self.facebook_client_secret):
            errors.append("Missing FACEBOOK_CLIENT_ID or FACEBOOK_CLIENT_SECRET in environment")
        if self.twitter_use_streaming and not (self.twitter_username and self.twitter_password):
            errors.append("Twitter streaming requires TWITTER_USERNAME and TWITTER_PASSWORD")

        if self.cache.capacity <= 0:
            errors.append("cache.capacity must be greater than 0")
        if self.cache.purge_threshold_factor < 1.0:
            errors.append("cache.purge_threshold_factor must be at least 1.0")

        for source_type in SourceType:
            if self.polling.interval_for(source_type) <= 0:
                errors.append(f"polling.{source_type.value}_interval_sec must be greater than 0")

        if self.max_item_age_days <= 0:
            errors.append("max_item_age_days must be greater than 0")

        if self.backoff.exponential_floor_sec <= 0 or self.backoff.linear_floor_sec <= 0:
            errors.append("backoff floors must be greater than 0")
        if self.backoff.exponential_ceiling_sec < self.backoff.exponential_floor_sec:
            errors.append("backoff.exponential_ceiling_sec must not be below the floor")
        if self.backoff.linear_ceiling_sec < self.backoff.linear_floor_sec:
            errors.append("backoff.linear_ceiling_sec must not be below the floor")
        if self.backoff.retry_after_ceiling_sec <= 0:
            errors.append("backoff.retry_after_ceiling_sec must be greater than 0")

        if self.http.request_timeout_sec <= 0:
            errors.append("http.request_timeout_sec must be greater than 0")

        if self.filtering.profanity_enabled and not self.filtering.profanity_words:
            errors.append("filtering.profanity_enabled is set but profanity_words is empty")

        return errors


def _apply_section(section: Any, values: Dict[str, Any]) -> None:
    known = {f.name for f in fields(section)}
    for key, value in values.items():
        if key in known:
            setattr(section, key, value)
