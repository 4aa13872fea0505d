"""Route that filters rendered HTML before it is sent to the browser."""

import logging

from fastapi import APIRouter
from pydantic import BaseModel, Field

from allyfilter.dependencies import FilterDep
from allyfilter.models.files import FilterStats

logger = logging.getLogger(__name__)

router = APIRouter(tags=["filter"])


class FilterRequest(BaseModel):
    """Request body for filtering a document."""

    html: str


class FilterResponse(BaseModel):
    """Response body with the filtered document."""

    html: str
    stats: FilterStats = Field(default_factory=FilterStats)


@router.post("/filter")
async def filter_html(body: FilterRequest, file_link_filter: FilterDep) -> FilterResponse:
    """Wrap the file links and images of a document the current user may enhance."""
    html = await file_link_filter.rewrite(body.html)
    stats = file_link_filter.last_stats
    if stats.candidates:
        logger.debug(
            "Filtered document: %d candidates, %d wrapped, %d storage queries",
            stats.candidates,
            stats.wrapped,
            stats.storage_queries,
        )
    return FilterResponse(html=html, stats=stats)
