from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class RuntimeEnv:
    base_url: str
    user_id: str
    translation_feature_enabled: bool


@dataclass
class AppConfig:
    language: str
    learning_level: str
    auto_translate: bool
    preferred_language: str
    daily_message_limit: int
    max_retained_sessions: int
    context_messages: int
    max_retries: int
    storage_db_path: str
    storage_max_bytes: int
    request_timeout_seconds: float
    session_id: str | None
    log_level: str
    log_consumers: list | None


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        language=str(config.get("Language", "en")).strip().lower(),
        learning_level=str(config.get("LearningLevel", "intermediate")).strip().lower(),
        auto_translate=_to_bool(config.get("AutoTranslate", False), default=False),
        preferred_language=str(config.get("PreferredLanguage", "en")).strip().lower(),
        daily_message_limit=int(config.get("DailyMessageLimit", 50)),
        max_retained_sessions=int(config.get("MaxRetainedSessions", 10)),
        context_messages=int(config.get("ContextMessages", 10)),
        max_retries=int(config.get("MaxRetries", 3)),
        storage_db_path=str(config.get("StorageDbPath", ".tutor_chat/storage.db")),
        storage_max_bytes=int(config.get("StorageMaxBytes", 5 * 1024 * 1024)),
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", 60)),
        session_id=str(config.get("SessionId", "")).strip() or None,
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        base_url=os.environ.get("TUTOR_CHAT_BASE_URL", "http://localhost:3000").rstrip("/"),
        user_id=os.environ.get("TUTOR_CHAT_USER_ID", "").strip() or "anonymous",
        translation_feature_enabled=_to_bool(os.environ.get("ENABLE_TRANSLATION_FEATURE"), default=True),
    )
