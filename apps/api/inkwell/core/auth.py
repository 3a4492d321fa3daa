from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Header, HTTPException, status

from inkwell.core.config import _parse_mapping, settings
from inkwell.core.errors import AuthorizationError

KNOWN_TIERS = ("free", "hobbyist", "professional", "studio")


@dataclass(frozen=True)
class AuthPrincipal:
    user_id: str
    tier: str | None = None


def normalize_tier(value: str | None) -> str:
    tier = str(value or "").strip().lower()
    return tier if tier in KNOWN_TIERS else "free"


def _parse_token_mapping(raw: str) -> dict[str, str]:
    token_to_user: dict[str, str] = {}
    for user, token_value in _parse_mapping(raw).items():
        token_to_user[token_value] = user
    return token_to_user


def _resolve_token_mapping() -> dict[str, str]:
    mapped = _parse_token_mapping(settings.auth_tokens)
    if mapped:
        return mapped
    fallback_token = str(settings.auth_token or "").strip()
    fallback_user = str(settings.auth_user or "").strip()
    if fallback_token and fallback_user:
        return {fallback_token: fallback_user}
    return {}


def _resolve_configured_tier(user_id: str) -> str | None:
    configured = _parse_mapping(settings.auth_user_tiers).get(user_id)
    return normalize_tier(configured) if configured else None


def get_current_principal(
    authorization: Annotated[str | None, Header(alias="Authorization")] = None,
) -> AuthPrincipal:
    if not settings.auth_enabled:
        fallback_user = str(settings.auth_disabled_user or "local-user").strip() or "local-user"
        return AuthPrincipal(user_id=fallback_user, tier=normalize_tier(settings.auth_disabled_tier))

    token_to_user = _resolve_token_mapping()
    if not token_to_user:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="AUTH_TOKENS/AUTH_TOKEN is not configured",
        )

    auth_header = str(authorization or "").strip()
    if not auth_header:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing Authorization header")

    scheme, _, credential = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not credential.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid Authorization header")

    user_id = token_to_user.get(credential.strip())
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid access token")

    return AuthPrincipal(user_id=user_id, tier=_resolve_configured_tier(user_id))


def ensure_owner(user_id: str, owner_id: str | None, *, resource: str) -> None:
    if not str(user_id or "").strip():
        raise AuthorizationError("authentication required", authenticated=False)
    if not settings.auth_enabled:
        return
    if owner_id is None or str(owner_id) != str(user_id):
        raise AuthorizationError(f"{resource} access denied", resource=resource)
