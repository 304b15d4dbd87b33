from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from tutor_chat.app_config import AppConfig, RuntimeEnv
from tutor_chat.chat_engine import ChatEngine
from tutor_chat.completion_client import HttpCompletionClient
from tutor_chat.logging_config import setup_logging
from tutor_chat.memory import KeyValueStore, SessionManager, SessionStore
from tutor_chat.rate_limiter import DailyRateLimiter
from tutor_chat.retry import RetryController
from tutor_chat.translation import HttpTranslationClient, TranslationOverlay


@dataclass
class AppRuntime:
    engine: ChatEngine
    store: KeyValueStore
    completion_client: HttpCompletionClient
    translation_client: HttpTranslationClient | None
    log_descriptions: list[str]

    async def aclose(self) -> None:
        await self.engine.stop()
        await self.completion_client.aclose()
        if self.translation_client is not None:
            await self.translation_client.aclose()
        self.store.close()


async def bootstrap_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    on_delta: Callable[[str], None] | None = None,
) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers, user_id=env.user_id)

    db_path = Path(app.storage_db_path)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    store = KeyValueStore(str(db_path), capacity_bytes=app.storage_max_bytes)
    session_store = SessionStore(store, max_retained_sessions=app.max_retained_sessions)
    session_manager = SessionManager(store, session_store, user_id=env.user_id)

    completion_client = HttpCompletionClient(env.base_url, timeout=app.request_timeout_seconds)
    translation_client: HttpTranslationClient | None = None
    translate = app.auto_translate and env.translation_feature_enabled
    if translate:
        translation_client = HttpTranslationClient(env.base_url, timeout=app.request_timeout_seconds)

    engine = ChatEngine(
        completion=completion_client,
        rate_limiter=DailyRateLimiter(store, daily_limit=app.daily_message_limit),
        session_store=session_store,
        session_manager=session_manager,
        translation=TranslationOverlay(translation_client, enabled=translate, user_id=env.user_id),
        retry=RetryController(max_retries=app.max_retries),
        user_id=env.user_id,
        language=app.language,
        learning_level=app.learning_level,
        preferred_language=app.preferred_language,
        context_messages=app.context_messages,
        on_delta=on_delta,
    )

    if app.session_id:
        try:
            await engine.select_session(app.session_id)
        except ValueError:
            logger.warning(f"Configured session not found, starting a new one: {app.session_id}")
            await engine.new_session()
    else:
        await engine.new_session()

    return AppRuntime(
        engine=engine,
        store=store,
        completion_client=completion_client,
        translation_client=translation_client,
        log_descriptions=log_descriptions,
    )
