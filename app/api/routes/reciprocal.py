"""Public reciprocal-link endpoints: verify a submitter's page and serve link snippets."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from app.services.backlinks.errors import InvalidUrl
from app.services.backlinks.reciprocal import (
    ALL_SNIPPETS_KEY,
    ReciprocalLinkChecker,
    get_reciprocal_checker,
    reciprocal_snippets,
)

router = APIRouter()
logger = logging.getLogger(__name__)

SINGLE_SNIPPET_INSTRUCTIONS = "Add this HTML to your page where you want the link to appear:"
ALL_SNIPPETS_INSTRUCTIONS = "Add these HTML snippets to your page. You can add one or all links."


class ReciprocalVerifyRequest(BaseModel):
    source_url: str = Field(..., min_length=1, max_length=2048)


class ReciprocalLinkResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    found: bool
    is_dofollow: bool = Field(alias="isDofollow")
    anchor_text: str | None = Field(default=None, alias="anchorText")
    error: str | None = None


class ReciprocalVerifyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    verified: bool
    verified_count: int = Field(alias="verifiedCount")
    required_count: int = Field(alias="requiredCount")
    results: list[ReciprocalLinkResult]
    message: str


class ReciprocalHtmlResponse(BaseModel):
    html: str
    snippets: dict[str, str]
    instructions: dict[str, str]


@router.post("/reciprocal/verify", response_model=ReciprocalVerifyResponse)
async def verify_reciprocal(
    payload: ReciprocalVerifyRequest,
    checker: ReciprocalLinkChecker = Depends(get_reciprocal_checker),
) -> ReciprocalVerifyResponse:
    try:
        summary = await checker.verify(payload.source_url)
    except InvalidUrl as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if summary.verified:
        message = "Reciprocal link verified."
    else:
        message = "No dofollow link back to the platform was found on this page."
    return ReciprocalVerifyResponse(
        verified=summary.verified,
        verified_count=summary.verified_count,
        required_count=summary.required_count,
        results=[
            ReciprocalLinkResult(
                url=result.url,
                found=result.found,
                is_dofollow=result.is_dofollow,
                anchor_text=result.anchor_text,
                error=result.error,
            )
            for result in summary.results
        ],
        message=message,
    )


@router.get("/reciprocal/html", response_model=ReciprocalHtmlResponse)
async def reciprocal_html(
    snippet_type: str = Query(ALL_SNIPPETS_KEY, alias="type"),
) -> ReciprocalHtmlResponse:
    """HTML a submitter can paste to link back; unknown types fall back to every link."""
    snippets = reciprocal_snippets()
    instructions = {
        key: ALL_SNIPPETS_INSTRUCTIONS if key == ALL_SNIPPETS_KEY else SINGLE_SNIPPET_INSTRUCTIONS
        for key in snippets
    }
    return ReciprocalHtmlResponse(
        html=snippets.get(snippet_type.strip().lower(), snippets[ALL_SNIPPETS_KEY]),
        snippets=snippets,
        instructions=instructions,
    )
