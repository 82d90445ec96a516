"""Pydantic schemas for the feedback endpoints.

The widget speaks camelCase JSON; models use snake_case attributes with
camelCase aliases and accept either on input.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Viewport(_CamelModel):
    width: int
    height: int


class PlatformInfo(_CamelModel):
    """Browser or OS as reported by the widget, or parsed from the user agent."""

    name: str
    version: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def accept_plain_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"name": data}
        return data

    def __str__(self) -> str:
        return f"{self.name} {self.version}" if self.version else self.name


class Metadata(_CamelModel):
    url: str
    user_agent: str
    viewport: Viewport
    timestamp: str
    element_selector: Optional[str] = None
    browser: Optional[PlatformInfo] = None
    os: Optional[PlatformInfo] = None
    device_pixel_ratio: Optional[float] = None
    language: Optional[str] = None


class Submitter(_CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None


class Submission(_CamelModel):
    repo: str
    title: str
    description: str
    screenshot: Optional[str] = None
    submitter: Optional[Submitter] = None
    category: Optional[str] = None
    metadata: Metadata

    @property
    def owner(self) -> str:
        return self.repo.split("/", 1)[0]

    @property
    def repo_name(self) -> str:
        return self.repo.split("/", 1)[1]


class FeedbackResponse(_CamelModel):
    success: bool = True
    issue_number: int
    issue_url: str
    is_public: bool


class CheckResponse(BaseModel):
    installed: bool
    repo: str


class HealthResponse(BaseModel):
    status: str
    environment: str
    timestamp: str
