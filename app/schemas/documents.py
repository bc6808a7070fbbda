from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.document_request import (
    BUSINESS_DOCUMENT_TYPES,
    PERSONAL_DOCUMENT_TYPES,
    REQUESTED_DOCUMENT_TYPES,
)


class DocumentRequestCreate(BaseModel):
    document_type: str
    description: str = Field(min_length=1, max_length=2000)
    is_required: bool = True
    due_date: datetime | None = None

    @field_validator("document_type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if cleaned not in REQUESTED_DOCUMENT_TYPES:
            raise ValueError(f"Unsupported document type '{value}'")
        return cleaned


class DocumentRequestFulfill(BaseModel):
    doc_url: str = Field(min_length=1, max_length=2000)
    # Business documents only
    business_id: UUID | None = None
    doc_password: str | None = Field(default=None, max_length=200)
    doc_bank_name: str | None = Field(default=None, max_length=100)


class DocumentRequestDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_application_id: UUID
    requested_by: UUID
    requested_from: UUID
    document_type: str
    description: str
    is_required: bool
    status: str
    due_date: datetime | None = None
    fulfilled_at: datetime | None = None
    fulfilled_with: UUID | None = None
    created_at: datetime | None = None


class DocumentRequestListResponse(BaseModel):
    items: list[DocumentRequestDTO]
    total: int


class OverdueSweepResponse(BaseModel):
    marked_overdue: int


class PersonalDocumentItem(BaseModel):
    doc_type: str
    doc_url: str = Field(min_length=1, max_length=2000)

    @field_validator("doc_type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if cleaned not in PERSONAL_DOCUMENT_TYPES:
            raise ValueError(f"Unsupported personal document type '{value}'")
        return cleaned


class PersonalDocumentsUpsert(BaseModel):
    documents: list[PersonalDocumentItem] = Field(min_length=1)


class BusinessDocumentItem(BaseModel):
    doc_type: str
    doc_url: str = Field(min_length=1, max_length=2000)
    is_password_protected: bool = False
    doc_password: str | None = Field(default=None, min_length=1, max_length=200)
    doc_bank_name: str | None = Field(default=None, min_length=1, max_length=100)

    @field_validator("doc_type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if cleaned not in BUSINESS_DOCUMENT_TYPES:
            raise ValueError(f"Unsupported business document type '{value}'")
        return cleaned

    @model_validator(mode="after")
    def _conditional_fields(self) -> "BusinessDocumentItem":
        if self.is_password_protected and not self.doc_password:
            raise ValueError("doc_password is required for password-protected documents")
        if self.doc_type == "annual_bank_statement" and not self.doc_bank_name:
            raise ValueError("doc_bank_name is required for annual bank statements")
        return self


class BusinessDocumentsUpsert(BaseModel):
    documents: list[BusinessDocumentItem] = Field(min_length=1)


class PersonalDocumentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    doc_type: str
    doc_url: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PersonalDocumentListResponse(BaseModel):
    items: list[PersonalDocumentDTO]
    total: int


class BusinessDocumentDTO(BaseModel):
    """Business document as shown to callers; the password itself never leaves the service."""

    id: UUID
    business_id: UUID
    doc_type: str
    doc_url: str
    doc_bank_name: str | None = None
    has_password: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_document(cls, document) -> "BusinessDocumentDTO":
        return cls(
            id=document.id,
            business_id=document.business_id,
            doc_type=document.doc_type,
            doc_url=document.doc_url,
            doc_bank_name=document.doc_bank_name,
            has_password=bool(document.doc_password),
            created_at=document.created_at,
            updated_at=document.updated_at,
        )


class BusinessDocumentListResponse(BaseModel):
    items: list[BusinessDocumentDTO]
    total: int
