"""Pydantic models for record store requests and responses."""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Any, Dict


MAX_COMMENT_LENGTH = 2000


class SubmissionCreateRequest(BaseModel):
    """Request body for ``POST /submissions``."""
    model_config = ConfigDict(populate_by_name=True)

    team_id: str = Field(..., alias="teamId", min_length=1, description="Submitting team")
    milestone_id: str = Field(..., alias="milestoneId", min_length=1, description="Target milestone")
    file_urls: List[str] = Field(default_factory=list, alias="fileUrls", description="Uploaded file URLs")
    link: Optional[str] = Field(None, description="Optional submission link")
    comments: str = Field(default="", description="Free-form comments")

    @field_validator('link')
    @classmethod
    def validate_link(cls, v: Optional[str]) -> Optional[str]:
        """Validate link is an http(s) URL."""
        if v is None:
            return v
        v = v.strip()
        if not v:
            return None
        if not (v.startswith('http://') or v.startswith('https://')):
            raise ValueError("Link must be an http(s) URL")
        return v

    @field_validator('file_urls')
    @classmethod
    def validate_file_urls(cls, v: List[str]) -> List[str]:
        """Drop blank entries."""
        return [url.strip() for url in v if url and url.strip()]

    @field_validator('comments')
    @classmethod
    def validate_comments(cls, v: str) -> str:
        """Validate comment length."""
        if len(v) > MAX_COMMENT_LENGTH:
            raise ValueError(f"Comments must be {MAX_COMMENT_LENGTH} characters or less")
        return v

    @model_validator(mode='after')
    def require_content(self) -> "SubmissionCreateRequest":
        """A submission needs at least one file or a link."""
        if not self.file_urls and not self.link:
            raise ValueError("Provide at least one file URL or a link")
        return self

    def to_payload(self) -> Dict[str, Any]:
        """Serialize with the store's field names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SubmissionsEnvelope(BaseModel):
    """Response body for ``GET /submissions``."""
    submissions: List[Dict[str, Any]] = Field(default_factory=list)
    meta: Optional[Dict[str, Any]] = None


class MilestonesEnvelope(BaseModel):
    """Response body for ``GET /cohorts/{cohortId}/milestones``."""
    milestones: List[Dict[str, Any]] = Field(default_factory=list)


class StoreErrorBody(BaseModel):
    """Error body returned with non-2xx responses."""
    error: str = "Unknown error"
    details: Optional[Any] = None
