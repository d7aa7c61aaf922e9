import logging

from fastapi import APIRouter, Depends

from issue_relay.core.ratelimit import rate_limit
from issue_relay.schemas.titles import TitleOut, TitleRequest
from issue_relay.services.llm import LLMClient, LLMError, get_llm_client
from issue_relay.services.titles import derive_title

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "",
    response_model=TitleOut,
    dependencies=[Depends(rate_limit("titles", "title_rate_limit_per_hour"))],
)
async def generate_title(payload: TitleRequest, llm: LLMClient = Depends(get_llm_client)) -> TitleOut:
    if not llm.configured:
        return TitleOut(
            title=derive_title(payload.prompt),
            is_generated=False,
            warning="AI title generation is not configured. Using fallback title generation.",
        )

    try:
        suggestion = await llm.suggest_title(payload.prompt)
    except LLMError as exc:
        logger.warning("AI title generation failed: %s", exc)
        return TitleOut(
            title=derive_title(payload.prompt),
            is_generated=False,
            warning="Failed to generate AI title. Using fallback.",
        )

    return TitleOut(title=suggestion.title, alternatives=suggestion.alternatives, is_generated=True)
