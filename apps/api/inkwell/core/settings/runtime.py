from __future__ import annotations

from typing import Any


class RuntimeSettings:
    """Proxy view for fan-out and telemetry runtime settings on root Settings."""

    FIELD_NAMES: tuple[str, ...] = (
        "context_source_timeout_seconds",
        "context_fetch_max_workers",
        "telemetry_preview_chars",
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
