"""应用配置管理."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置（环境变量）."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 数据存储
    database_url: str = "sqlite+aiosqlite:///./data/transfront.db"

    # Transmission 配置
    transmission_host: str = "localhost"
    transmission_port: int = 9091
    transmission_username: str = ""
    transmission_password: str = ""
    transmission_timeout_seconds: float = 30.0
    transmission_config_dir: str = (
        "/var/lib/transmission-daemon/.config/transmission-daemon"
    )
    transmission_restart_command: str = "sudo systemctl restart transmission-daemon"

    # 删除补救流程
    remove_settle_seconds: float = 0.5
    restart_debounce_seconds: float = 3.0
    restart_grace_seconds: float = 3.0

    # RSS 配置
    rss_poll_interval_minutes: int = 30
    rss_initial_delay_seconds: int = 10
    rss_fetch_timeout_seconds: float = 30.0
    rss_max_body_bytes: int = 5 * 1024 * 1024
    rss_max_redirects: int = 3
    rss_user_agent: str = "Transfront-RSS/1.0"
    rule_pattern_max_length: int = 200

    # 磁盘监控
    disk_threshold_percent: float = 10.0
    disk_check_interval_minutes: int = 5
    disk_initial_delay_seconds: int = 30

    # 种子上传
    upload_dir: str = "./data/uploads"
    upload_max_bytes: int = 10 * 1024 * 1024
    upload_max_files: int = 10

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """获取应用配置（带缓存）."""
    return Settings()
