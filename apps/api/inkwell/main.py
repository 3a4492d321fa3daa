from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from inkwell.api.router import api_router
from inkwell.core.auth import _resolve_token_mapping
from inkwell.core.config import settings
from inkwell.core.database import init_db
from inkwell.services.model_router import MODEL_CATALOG

logger = logging.getLogger("inkwell.security")

_PROVIDER_KEYS = {
    "anthropic": "anthropic_api_key",
    "openai": "openai_api_key",
    "deepseek": "deepseek_api_key",
}


def _missing_provider_keys() -> list[str]:
    providers = sorted({capability.provider for capability in MODEL_CATALOG.values()})
    return [
        name
        for name in providers
        if name in _PROVIDER_KEYS and not str(getattr(settings, _PROVIDER_KEYS[name], "") or "").strip()
    ]


def _emit_startup_notices() -> None:
    if not settings.auth_enabled:
        logger.warning(
            "SECURITY WARNING: AUTH_ENABLED=false. Every request runs as %s on the %s tier; keep this deployment local.",
            settings.auth_disabled_user,
            settings.auth_disabled_tier,
        )
    elif "local-dev-token" in _resolve_token_mapping():
        logger.warning(
            "SECURITY WARNING: default token 'local-dev-token' is active. Replace it before any non-local exposure."
        )

    provider = str(settings.llm_provider or "").strip().lower()
    if provider == "stub":
        logger.warning("NOTICE: LLM_PROVIDER=stub. Generation endpoints return placeholder drafts.")
    else:
        missing = _missing_provider_keys()
        if missing:
            logger.warning("NOTICE: no API key configured for providers %s; requests routed there will fail.", missing)
    if settings.langfuse_enabled and not str(settings.langfuse_public_key or "").strip():
        logger.warning("NOTICE: LANGFUSE_ENABLED=true without LANGFUSE_PUBLIC_KEY; traces will be dropped.")


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    _emit_startup_notices()
    yield


app = FastAPI(title="inkwell-api", lifespan=lifespan)
app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/health")
def health():
    return {"ok": True, "llm_provider": settings.llm_provider}
