"""Settings schema for the telemetry pipeline."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_DEDUP_INTERVALS: dict[str, int] = {
    "install": 60_000,
    "update": 60_000,
    "copy": 500,
    "error": 3_000,
    "default": 5_000,
}


class CollectorSettings(BaseModel):
    website_id: str = Field(default="c0b57f97-5293-42d9-8ec2-4708e4ea68ae")
    api_url: str = Field(default="https://umami.lunarye.com")
    endpoint_path: str = Field(default="/api/send")
    hostname: str = Field(default="telemeter", description="Site identifier sent with every event")
    timeout_ms: int = Field(default=8_000, ge=100, le=120_000)

    @field_validator("api_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def endpoint(self) -> str:
        return f"{self.api_url}{self.endpoint_path}"


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1, le=20)
    base_delay_ms: int = Field(default=800, ge=0)
    max_delay_ms: int = Field(default=5_000, ge=0)


class QueueSettings(BaseModel):
    max_size: int = Field(default=50, ge=1)
    batch_size: int = Field(default=8, ge=1)
    process_interval_ms: int = Field(default=2_000, ge=10)


class DedupSettings(BaseModel):
    intervals: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_DEDUP_INTERVALS))
    cleanup_interval_ms: int = Field(default=6 * 60 * 60 * 1000, ge=0)
    cleanup_delay_ms: int = Field(default=1_000, ge=0)

    @model_validator(mode="after")
    def ensure_default_interval(self) -> "DedupSettings":
        self.intervals.setdefault("default", DEFAULT_DEDUP_INTERVALS["default"])
        return self

    def interval_for(self, name: str) -> int:
        return self.intervals.get(name, self.intervals["default"])


class StorageKeys(BaseModel):
    user_id: str = Field(default="analytics_uid")
    queue: str = Field(default="analytics_queue")
    install_recorded: str = Field(default="analytics_installed")
    install_date: str = Field(default="analytics_install_date")
    last_version: str = Field(default="analytics_version")
    dedup_prefix: str = Field(default="dedup_")


class StorageSettings(BaseModel):
    keys: StorageKeys = Field(default_factory=StorageKeys)
    max_retries: int = Field(default=2, ge=1, le=10)
    retry_delay_ms: int = Field(default=100, ge=0)


class TelemetrySettings(BaseModel):
    schema_version: int = Field(default=1)
    enabled: bool = Field(default=True)
    collector: CollectorSettings = Field(default_factory=CollectorSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    dedup: DedupSettings = Field(default_factory=DedupSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    def setting_items(self) -> list[tuple[str, str]]:
        """Flatten to dotted key/value pairs, as printed by ``telemeter settings``."""

        result: list[tuple[str, str]] = []

        def walk(prefix: str, value: object) -> None:
            if isinstance(value, BaseModel):
                value = value.model_dump()
            if isinstance(value, dict):
                for key, nested in value.items():
                    walk(f"{prefix}.{key}" if prefix else key, nested)
            else:
                result.append((prefix, str(value)))

        walk("", self)
        return result
