"""
Runtime Settings Model - operator-editable settings blob
"""
from typing import Optional

from pydantic import BaseModel, Field


class RuntimeSettings(BaseModel):
    """Persisted in settings.json. Unknown keys from older files are ignored."""

    humor_level: int = Field(default=0, ge=0, le=100)
    temperature: float = Field(default=0.6, ge=0.0, le=2.0)
    groq_api_key: Optional[str] = None
    # None = decide from configuration and available credentials
    llm_provider: Optional[str] = None

    def merged(self, update: dict) -> "RuntimeSettings":
        """Return a validated copy with ``update`` applied (None values are skipped)."""
        data = self.model_dump()
        data.update({k: v for k, v in update.items() if v is not None})
        return RuntimeSettings.model_validate(data)
