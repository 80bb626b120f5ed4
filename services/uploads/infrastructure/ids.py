from __future__ import annotations

import secrets


class HexIdProvider:
    def __init__(self, num_bytes: int = 16, prefix: str = "") -> None:
        self._num_bytes = num_bytes
        self._prefix = prefix

    def generate(self) -> str:
        token = secrets.token_hex(self._num_bytes)
        return f"{self._prefix}_{token}" if self._prefix else token
