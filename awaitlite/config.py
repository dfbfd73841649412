import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "AWAITLITE_"


class EngineSettings(BaseModel):
    busy_timeout: float = Field(default=5.0, ge=0)
    cached_statements: int = Field(default=128, ge=0)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        """Build settings from AWAITLITE_* variables; unset ones keep their defaults."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None and raw.strip():
                values[name] = raw.strip()
        return cls(**values)
