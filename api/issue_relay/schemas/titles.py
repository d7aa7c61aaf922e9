from pydantic import BaseModel, Field


class TitleRequest(BaseModel):
    prompt: str = Field(min_length=10)


class TitleOut(BaseModel):
    title: str
    alternatives: list[str] = Field(default_factory=list)
    is_generated: bool
    warning: str | None = None
