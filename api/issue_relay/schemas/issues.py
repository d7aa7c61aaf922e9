from pydantic import BaseModel, ConfigDict, Field

from issue_relay.schemas.jobs import REPOSITORY_PATTERN


class IssuePublishRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=256)
    body: str = Field(min_length=1)
    repository: str = Field(pattern=REPOSITORY_PATTERN)
    labels: list[str] = Field(default_factory=list)
    assignees: list[str] = Field(default_factory=list)


class IssuePublished(BaseModel):
    success: bool = True
    issue_url: str
    issue_number: int
