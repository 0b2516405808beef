"""Worker configuration read from environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from quality_worker.utils.errors import ConfigurationError


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'") from exc


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'") from exc


@dataclass(frozen=True)
class WorkerConfig:
    """Settings for one worker process.

    Build with WorkerConfig.from_env(); every field has a default so the
    HTTP listener can start even when the environment is incomplete.
    """

    port: int = 8080
    gcp_project_id: str = ""
    gcs_bucket_name: str = "qualidade_audio_envio"
    subscription_name: str = "upload_audio_qualidade"
    max_retries: int = 3
    stage_max_attempts: int = 3
    stage_base_delay_seconds: float = 1.0
    nack_base_delay_seconds: float = 1.0
    backend_api_url: str = "http://localhost:3001"
    mongo_uri: str = ""
    database_name: str = "console_analises"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    openai_api_key: str = ""
    gpt_model: str = "gpt-5-mini"
    language_code: str = "pt-BR"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> WorkerConfig:
        """Load settings from the environment.

        Args:
            env: Mapping to read instead of os.environ (for tests).

        Raises:
            ConfigurationError: If a numeric setting does not parse.
        """
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            port=_int(env, "PORT", defaults.port),
            gcp_project_id=env.get("GCP_PROJECT_ID", ""),
            gcs_bucket_name=env.get("GCS_BUCKET_NAME") or defaults.gcs_bucket_name,
            subscription_name=env.get("PUBSUB_SUBSCRIPTION_NAME")
            or defaults.subscription_name,
            max_retries=_int(env, "MAX_RETRIES", defaults.max_retries),
            stage_max_attempts=_int(
                env, "STAGE_MAX_ATTEMPTS", defaults.stage_max_attempts
            ),
            stage_base_delay_seconds=_float(
                env, "STAGE_BASE_DELAY_SECONDS", defaults.stage_base_delay_seconds
            ),
            nack_base_delay_seconds=_float(
                env, "NACK_BASE_DELAY_SECONDS", defaults.nack_base_delay_seconds
            ),
            backend_api_url=(
                env.get("BACKEND_API_URL") or defaults.backend_api_url
            ).rstrip("/"),
            mongo_uri=env.get("MONGO_ENV", ""),
            database_name=env.get("CONSOLE_ANALISES_DB") or defaults.database_name,
            gemini_api_key=env.get("GEMINI_API_KEY", ""),
            gemini_model=env.get("GEMINI_MODEL") or defaults.gemini_model,
            openai_api_key=env.get("OPENAI_API_KEY", ""),
            gpt_model=env.get("GPT_MODEL") or defaults.gpt_model,
            language_code=env.get("LANGUAGE_CODE") or defaults.language_code,
            log_level=(env.get("LOG_LEVEL") or defaults.log_level).upper(),
        )
