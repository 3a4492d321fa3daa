import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from inkwell.core.config import settings
from inkwell.core.errors import UpstreamModelError
from inkwell.services.model_router import MODEL_CATALOG
from inkwell.services.story_context import estimate_tokens

_LOGGER = logging.getLogger(__name__)

# USD per million tokens: (input, output).
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-sonnet-4.5": (3.0, 15.0),
    "gpt-5": (5.0, 15.0),
    "deepseek": (0.27, 1.1),
}


@dataclass
class ModelUsage:
    input_tokens: int
    output_tokens: int
    total_cost: float

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ModelInvocationResult:
    content: str
    usage: ModelUsage
    model: str
    provider: str


ModelInvoker = Callable[..., Awaitable[ModelInvocationResult]]


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    input_price, output_price = MODEL_PRICING.get(model, (0.0, 0.0))
    cost = (max(input_tokens, 0) * input_price + max(output_tokens, 0) * output_price) / 1_000_000
    return round(cost, 6)


def build_system_prompt(context: str | None) -> str:
    base = str(settings.llm_system_prompt or "").strip()
    context_text = str(context or "").strip()
    if not context_text:
        return base
    return f"{base} Here's the context:\n\n{context_text}"


def _as_int(value: Any) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


def _json_object(response: httpx.Response) -> dict[str, Any]:
    payload = response.json()
    if not isinstance(payload, dict):
        raise ValueError(f"unexpected response body type {type(payload).__name__}")
    return payload


def _usage(model: str, input_tokens: int, output_tokens: int) -> ModelUsage:
    return ModelUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_cost=estimate_cost(model, input_tokens, output_tokens),
    )


async def _invoke_stub(model: str, prompt: str, context: str | None, max_tokens: int) -> ModelInvocationResult:
    context_lines = len([line for line in str(context or "").splitlines() if line.strip()])
    content = (
        f"[{model} draft] Working from your request \"{prompt.strip()[:200]}\" "
        f"with {context_lines} line(s) of story context. Connect a live provider to generate prose."
    )
    input_tokens = estimate_tokens(build_system_prompt(context)) + estimate_tokens(prompt)
    output_tokens = min(estimate_tokens(content), max_tokens)
    return ModelInvocationResult(
        content=content,
        usage=_usage(model, input_tokens, output_tokens),
        model=model,
        provider="stub",
    )


async def _invoke_anthropic(model: str, prompt: str, context: str | None, max_tokens: int) -> ModelInvocationResult:
    api_key = str(settings.anthropic_api_key or "").strip()
    if not api_key:
        raise ValueError("ANTHROPIC_API_KEY is required for anthropic provider")

    endpoint = str(settings.anthropic_base_url or "https://api.anthropic.com/v1").rstrip("/") + "/messages"
    body: dict[str, Any] = {
        "model": settings.anthropic_model,
        "system": build_system_prompt(context),
        "messages": [{"role": "user", "content": prompt}],
        "temperature": float(settings.llm_temperature),
        "max_tokens": int(max_tokens),
    }
    headers = {
        "x-api-key": api_key,
        "anthropic-version": str(settings.anthropic_version or "2023-06-01"),
    }
    timeout = httpx.Timeout(float(settings.llm_timeout_seconds))
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.post(endpoint, json=body, headers=headers)
        response.raise_for_status()
        payload = _json_object(response)

    text_parts: list[str] = []
    content_blocks = payload.get("content")
    if isinstance(content_blocks, list):
        for item in content_blocks:
            if not isinstance(item, dict) or str(item.get("type", "")).lower() != "text":
                continue
            text = str(item.get("text", "") or "").strip()
            if text:
                text_parts.append(text)
    usage_raw = payload.get("usage") if isinstance(payload.get("usage"), dict) else {}
    return ModelInvocationResult(
        content="\n".join(text_parts).strip(),
        usage=_usage(model, _as_int(usage_raw.get("input_tokens")), _as_int(usage_raw.get("output_tokens"))),
        model=model,
        provider="anthropic",
    )


def _responses_output_text(payload: dict[str, Any]) -> str:
    direct = payload.get("output_text")
    if isinstance(direct, str) and direct.strip():
        return direct.strip()
    parts: list[str] = []
    output = payload.get("output")
    if isinstance(output, list):
        for item in output:
            if not isinstance(item, dict) or item.get("type") != "message":
                continue
            for block in item.get("content") or []:
                if isinstance(block, dict) and block.get("type") == "output_text":
                    text = str(block.get("text", "") or "").strip()
                    if text:
                        parts.append(text)
    return "\n".join(parts).strip()


async def _invoke_openai(model: str, prompt: str, context: str | None, max_tokens: int) -> ModelInvocationResult:
    api_key = str(settings.openai_api_key or "").strip()
    if not api_key:
        raise ValueError("OPENAI_API_KEY is required for openai provider")

    endpoint = str(settings.openai_base_url).rstrip("/") + "/responses"
    body = {
        "model": settings.openai_model,
        "instructions": build_system_prompt(context),
        "input": prompt,
        "max_output_tokens": int(max_tokens),
    }
    headers = {"Authorization": f"Bearer {api_key}"}
    timeout = httpx.Timeout(float(settings.llm_timeout_seconds))
    async with httpx.AsyncClient(timeout=timeout) as client:
        resp = await client.post(endpoint, json=body, headers=headers)
        resp.raise_for_status()
        data = _json_object(resp)

    usage_raw = data.get("usage") if isinstance(data.get("usage"), dict) else {}
    return ModelInvocationResult(
        content=_responses_output_text(data),
        usage=_usage(model, _as_int(usage_raw.get("input_tokens")), _as_int(usage_raw.get("output_tokens"))),
        model=model,
        provider="openai",
    )


async def _invoke_deepseek(model: str, prompt: str, context: str | None, max_tokens: int) -> ModelInvocationResult:
    api_key = str(settings.deepseek_api_key or "").strip()
    if not api_key:
        raise ValueError("DEEPSEEK_API_KEY is required for deepseek provider")

    endpoint = str(settings.deepseek_base_url).rstrip("/") + "/chat/completions"
    body = {
        "model": settings.deepseek_model,
        "messages": [
            {"role": "system", "content": build_system_prompt(context)},
            {"role": "user", "content": prompt},
        ],
        "temperature": float(settings.llm_temperature),
        "stream": False,
        "max_tokens": int(max_tokens),
    }
    headers = {"Authorization": f"Bearer {api_key}"}
    timeout = httpx.Timeout(float(settings.llm_timeout_seconds))
    async with httpx.AsyncClient(timeout=timeout) as client:
        resp = await client.post(endpoint, json=body, headers=headers)
        resp.raise_for_status()
        data = _json_object(resp)

    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ValueError("deepseek response has no choices")
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content", "") if isinstance(message, dict) else ""
    usage_raw = data.get("usage") if isinstance(data.get("usage"), dict) else {}
    return ModelInvocationResult(
        content=str(content or "").strip(),
        usage=_usage(model, _as_int(usage_raw.get("prompt_tokens")), _as_int(usage_raw.get("completion_tokens"))),
        model=model,
        provider="deepseek",
    )


_PROVIDER_INVOKERS: dict[str, Callable[[str, str, str | None, int], Awaitable[ModelInvocationResult]]] = {
    "anthropic": _invoke_anthropic,
    "openai": _invoke_openai,
    "deepseek": _invoke_deepseek,
}


def _resolve_invoker(model: str) -> Callable[[str, str, str | None, int], Awaitable[ModelInvocationResult]]:
    provider = (settings.llm_provider or "stub").strip().lower()
    if provider == "stub":
        return _invoke_stub
    capability = MODEL_CATALOG.get(model)
    if capability is None or capability.provider not in _PROVIDER_INVOKERS:
        raise UpstreamModelError(f"no provider configured for model {model}", model=model, retryable=False)
    return _PROVIDER_INVOKERS[capability.provider]


def clamp_max_tokens(max_tokens: int | None) -> int:
    requested = settings.llm_default_max_tokens if max_tokens is None else int(max_tokens)
    return max(1, min(requested, int(settings.llm_max_completion_tokens)))


async def invoke_model(
    model: str,
    prompt: str,
    context: str | None = None,
    max_tokens: int | None = None,
    *,
    timeout_seconds: float | None = None,
) -> ModelInvocationResult:
    """Run one completion; every failure surfaces as ``UpstreamModelError``."""
    invoker = _resolve_invoker(model)
    limit = clamp_max_tokens(max_tokens)
    timeout = float(settings.llm_timeout_seconds if timeout_seconds is None else timeout_seconds)
    try:
        return await asyncio.wait_for(invoker(model, prompt, context, limit), timeout=timeout)
    except asyncio.TimeoutError as exc:
        _LOGGER.warning("model invocation timed out model=%s timeout=%s", model, timeout)
        raise UpstreamModelError(f"{model} timed out after {timeout}s", model=model, retryable=True) from exc
    except httpx.HTTPStatusError as exc:
        status_code = exc.response.status_code if exc.response is not None else 0
        _LOGGER.warning("model invocation rejected model=%s status=%s", model, status_code)
        raise UpstreamModelError(
            f"{model} returned HTTP {status_code}",
            model=model,
            retryable=status_code == 429 or status_code >= 500,
        ) from exc
    except httpx.HTTPError as exc:
        _LOGGER.warning("model invocation transport error model=%s error=%s", model, exc)
        raise UpstreamModelError(f"{model} transport error: {exc}", model=model, retryable=True) from exc
    except ValueError as exc:
        raise UpstreamModelError(str(exc), model=model, retryable=False) from exc
    except UpstreamModelError:
        raise
    except Exception as exc:
        _LOGGER.exception("model invocation failed model=%s", model)
        raise UpstreamModelError(f"{model} returned an unusable response", model=model, retryable=False) from exc
