"""
Document store boundary.

Document records (including the LaTeX manifest) are owned by the editor's
database. The engine only resolves a document id to a record; access
control happens before the engine is invoked.
"""

from __future__ import annotations

from typing import Protocol

from bundler.app.schemas.manifest import DocumentRecord


class DocumentStore(Protocol):
    async def get_document(self, document_id: str) -> DocumentRecord:
        """Return the record or raise DocumentNotFoundError."""
        ...
