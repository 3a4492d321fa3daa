import unittest

from fastapi.testclient import TestClient

from inkwell.core.config import settings
from inkwell.main import _emit_startup_notices, app


class StartupTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._snapshot = {
            "auth_enabled": settings.auth_enabled,
            "auth_tokens": settings.auth_tokens,
            "llm_provider": settings.llm_provider,
            "langfuse_enabled": settings.langfuse_enabled,
            "langfuse_public_key": settings.langfuse_public_key,
        }

    def tearDown(self) -> None:
        for key, value in self._snapshot.items():
            setattr(settings, key, value)

    def test_health_reports_provider(self) -> None:
        settings.llm_provider = "stub"
        client = TestClient(app)
        resp = client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"ok": True, "llm_provider": "stub"})

    def test_notices_flag_disabled_auth_and_stub_provider(self) -> None:
        settings.auth_enabled = False
        settings.llm_provider = "stub"
        settings.langfuse_enabled = False
        with self.assertLogs("inkwell.security", level="WARNING") as logs:
            _emit_startup_notices()
        output = "\n".join(logs.output)
        self.assertIn("AUTH_ENABLED=false", output)
        self.assertIn("LLM_PROVIDER=stub", output)

    def test_notices_flag_default_dev_token(self) -> None:
        settings.auth_enabled = True
        settings.auth_tokens = "local-user:local-dev-token"
        settings.llm_provider = "stub"
        settings.langfuse_enabled = True
        settings.langfuse_public_key = ""
        with self.assertLogs("inkwell.security", level="WARNING") as logs:
            _emit_startup_notices()
        output = "\n".join(logs.output)
        self.assertIn("local-dev-token", output)
        self.assertIn("LANGFUSE_PUBLIC_KEY", output)


if __name__ == "__main__":
    unittest.main()
