"""Schemas shared across domains"""

from typing import Optional

from pydantic import BaseModel, field_validator


class ContentReference(BaseModel):
    """Opaque pointer to a file held by the blob store"""

    key: str
    url: str
    original_name: Optional[str] = None

    @field_validator("key", "url")
    @classmethod
    def validate_not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("Content reference key and url are required")
        return v.strip()

    def as_record(self) -> dict:
        return {"key": self.key, "url": self.url, "original_name": self.original_name}


class SiteAddress(BaseModel):
    street: Optional[str] = None
    barangay: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    zip_code: Optional[str] = None
    landmark: Optional[str] = None

    def is_blank(self) -> bool:
        return not any((self.street, self.barangay, self.city, self.province))
