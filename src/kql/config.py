"""Compiler configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping


@dataclass(frozen=True)
class CompilerConfig:
    """Settings shared by every compilation."""

    default_limit: int = 100
    # Parameter name the record service expects in place of a bare `id`
    record_id_parameter: str = "card_id"
    # Base URL handed to the spatial engine when registering a `cast_to` source
    record_service_url: str = "http://localhost:3000/api/card"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CompilerConfig:
        """Build a config from KQL_* environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            default_limit=int(env.get("KQL_DEFAULT_LIMIT", defaults.default_limit)),
            record_id_parameter=env.get("KQL_RECORD_ID_PARAMETER", defaults.record_id_parameter),
            record_service_url=env.get("KQL_RECORD_SERVICE_URL", defaults.record_service_url),
        )
