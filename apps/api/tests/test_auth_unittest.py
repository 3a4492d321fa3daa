import unittest

from fastapi import HTTPException

from inkwell.core.auth import ensure_owner, get_current_principal, normalize_tier
from inkwell.core.config import settings
from inkwell.core.errors import AuthorizationError


class AuthBehaviorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._snapshot = {
            "auth_enabled": settings.auth_enabled,
            "auth_tokens": settings.auth_tokens,
            "auth_token": settings.auth_token,
            "auth_user": settings.auth_user,
            "auth_user_tiers": settings.auth_user_tiers,
            "auth_disabled_user": settings.auth_disabled_user,
            "auth_disabled_tier": settings.auth_disabled_tier,
        }

    def tearDown(self) -> None:
        for key, value in self._snapshot.items():
            setattr(settings, key, value)

    def test_auth_disabled_uses_fallback_user_and_tier(self) -> None:
        settings.auth_enabled = False
        settings.auth_disabled_user = "solo-author"
        settings.auth_disabled_tier = "studio"
        principal = get_current_principal(None)
        self.assertEqual(principal.user_id, "solo-author")
        self.assertEqual(principal.tier, "studio")

    def test_auth_enabled_accepts_bearer_token_mapping(self) -> None:
        settings.auth_enabled = True
        settings.auth_tokens = "alice:token-a,bob:token-b"
        settings.auth_token = ""
        settings.auth_user = ""
        settings.auth_user_tiers = "bob:hobbyist"

        bob = get_current_principal("Bearer token-b")
        self.assertEqual(bob.user_id, "bob")
        self.assertEqual(bob.tier, "hobbyist")

        alice = get_current_principal("Bearer token-a")
        self.assertEqual(alice.user_id, "alice")
        self.assertIsNone(alice.tier)

    def test_auth_enabled_can_use_legacy_single_token_fallback(self) -> None:
        settings.auth_enabled = True
        settings.auth_tokens = ""
        settings.auth_token = "legacy-token"
        settings.auth_user = "legacy-user"

        principal = get_current_principal("Bearer legacy-token")
        self.assertEqual(principal.user_id, "legacy-user")

    def test_auth_enabled_rejects_missing_or_invalid_token(self) -> None:
        settings.auth_enabled = True
        settings.auth_tokens = "local-user:secret-token"
        settings.auth_token = ""
        settings.auth_user = ""

        with self.assertRaises(HTTPException) as missing_header:
            get_current_principal(None)
        self.assertEqual(missing_header.exception.status_code, 401)

        with self.assertRaises(HTTPException) as invalid_header:
            get_current_principal("Basic secret-token")
        self.assertEqual(invalid_header.exception.status_code, 401)

        with self.assertRaises(HTTPException) as invalid_token:
            get_current_principal("Bearer not-matching")
        self.assertEqual(invalid_token.exception.status_code, 401)

    def test_auth_enabled_without_token_config_fails_closed(self) -> None:
        settings.auth_enabled = True
        settings.auth_tokens = ""
        settings.auth_token = ""
        settings.auth_user = ""

        with self.assertRaises(HTTPException) as missing_config:
            get_current_principal("Bearer any")
        self.assertEqual(missing_config.exception.status_code, 500)

    def test_unknown_tiers_fall_back_to_free(self) -> None:
        self.assertEqual(normalize_tier("Professional"), "professional")
        self.assertEqual(normalize_tier("enterprise"), "free")
        self.assertEqual(normalize_tier(None), "free")

    def test_ensure_owner_rejects_cross_tenant_access(self) -> None:
        settings.auth_enabled = True
        ensure_owner("alice", "alice", resource="document")

        with self.assertRaises(AuthorizationError) as denied:
            ensure_owner("alice", "bob", resource="document")
        self.assertEqual(denied.exception.status_code, 403)

        with self.assertRaises(AuthorizationError) as anonymous:
            ensure_owner("", "bob", resource="document")
        self.assertEqual(anonymous.exception.status_code, 401)


if __name__ == "__main__":
    unittest.main()
