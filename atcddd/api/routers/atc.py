from fastapi import APIRouter, HTTPException

from atcddd.errors import ValidationError
from atcddd.models.atc import AtcDataResponse, AtcHierarchyResponse
from atcddd.services.atc_service import get_atc_data, get_atc_hierarchy
from atcddd.services.crawl.http import get_fetcher

router = APIRouter(prefix="/atc", tags=["atc"])


@router.get("/{code}", response_model=AtcDataResponse)
def api_get_atc_code(code: str, include_children: bool = False):
    try:
        items = get_atc_data(code, include_children=include_children, fetcher=get_fetcher())
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    if not items:
        raise HTTPException(status_code=404, detail=f"No ATC data found for {code}")
    return {"code": code, "count": len(items), "items": items}


@router.get("/{code}/hierarchy", response_model=AtcHierarchyResponse)
def api_get_atc_hierarchy(code: str, max_levels: int = 5):
    try:
        items = get_atc_hierarchy(code, max_levels=max_levels, fetcher=get_fetcher())
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    if not items:
        raise HTTPException(status_code=404, detail=f"No ATC hierarchy found under {code}")
    return {"code": code, "max_levels": max_levels, "count": len(items), "items": items}
