from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class BibEntry(BaseModel):
    """
    One parsed bibliography record.

    Field names are lower-cased; values are trimmed and stripped of their
    outer ``{}`` / ``""`` delimiters.
    """

    key: str
    entry_type: str
    fields: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def field(self, name: str) -> Optional[str]:
        value = self.fields.get(name.lower())
        return value or None
