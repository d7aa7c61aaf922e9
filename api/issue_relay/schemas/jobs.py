from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

JobType = Literal["create-and-publish-issue"]
JobStatus = Literal["pending", "processing", "completed", "failed"]

TERMINAL_JOB_STATUSES = {"completed", "failed"}
REPOSITORY_PATTERN = r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$"


class IssueSummary(BaseModel):
    type: str = "feature"
    priority: str = "medium"
    complexity: str = "medium"


class GeneratedContent(BaseModel):
    markdown: str = Field(min_length=1)
    summary: IssueSummary = Field(default_factory=IssueSummary)


class CreateAndPublishIssuePayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(default="", max_length=256)
    prompt: str = Field(min_length=1)
    repository: str = Field(pattern=REPOSITORY_PATTERN)
    generated_content: GeneratedContent | None = Field(
        default=None,
        validation_alias=AliasChoices("generated_content", "generatedContent"),
    )


# A second job type becomes a discriminated union of payload models here.
JobPayload = CreateAndPublishIssuePayload


class Job(BaseModel):
    id: str
    user_id: str
    type: JobType
    payload: JobPayload
    status: JobStatus
    retry_count: int = 0
    max_retries: int = 3
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


class JobCreateRequest(BaseModel):
    type: JobType = "create-and-publish-issue"
    payload: JobPayload


class JobAccepted(BaseModel):
    job_id: str
    status: JobStatus


class JobStatusOut(BaseModel):
    id: str
    status: JobStatus
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class ProcessJobsOut(BaseModel):
    success: bool
    processed_count: int
