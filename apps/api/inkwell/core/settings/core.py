from __future__ import annotations

from typing import Any


class CoreSettings:
    """Proxy view for core/auth/provider settings on root Settings."""

    FIELD_NAMES: tuple[str, ...] = (
        "api_prefix",
        "database_url",
        "auth_enabled",
        "auth_tokens",
        "auth_token",
        "auth_user",
        "auth_user_tiers",
        "auth_disabled_user",
        "auth_disabled_tier",
        "llm_provider",
        "llm_timeout_seconds",
        "llm_default_max_tokens",
        "llm_max_completion_tokens",
        "llm_temperature",
        "llm_system_prompt",
        "anthropic_base_url",
        "anthropic_api_key",
        "anthropic_model",
        "anthropic_version",
        "openai_base_url",
        "openai_api_key",
        "openai_model",
        "deepseek_base_url",
        "deepseek_api_key",
        "deepseek_model",
        "langfuse_enabled",
        "langfuse_host",
        "langfuse_public_key",
        "langfuse_secret_key",
    )

    def __init__(self, root: Any) -> None:
        object.__setattr__(self, "_root", root)

    def __getattr__(self, name: str) -> Any:
        if name in self.FIELD_NAMES:
            return getattr(self._root, name)
        raise AttributeError(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self.FIELD_NAMES:
            setattr(self._root, name, value)
            return
        object.__setattr__(self, name, value)
