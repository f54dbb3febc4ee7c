"""Document models written to the document store."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class DocumentSection(BaseModel):
    """Structured document text: an optional prefix, the body and sub-sections."""

    prefix: Optional[str] = None
    content: Optional[str] = None
    sections: list["DocumentSection"] = Field(default_factory=list)

    def full_text(self) -> str:
        parts = [self.prefix or "", self.content or ""]
        parts.extend(section.full_text() for section in self.sections)
        return "".join(parts)


class Document(BaseModel):
    """One document keyed by a caller-supplied identifier."""

    document_id: str
    text: DocumentSection
    source_url: Optional[str] = None
    timestamp_ms: Optional[int] = None
    tags: list[str] = Field(default_factory=list)
    parents: list[str] = Field(default_factory=list)
    upsert_context: dict[str, Any] = Field(default_factory=dict)


DocumentSection.model_rebuild()
