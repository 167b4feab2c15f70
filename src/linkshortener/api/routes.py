from fastapi import APIRouter, Depends, Query, Request, status

from linkshortener.api.deps import (
    api_rate_limiter,
    get_link_store,
    get_tracking_store,
    require_api_key,
)
from linkshortener.core.config import settings
from linkshortener.db.models import Link
from linkshortener.schemas.links import (
    CreateLinkRequest,
    LinkListResponse,
    LinkResponse,
    UpdateLinkRequest,
)
from linkshortener.schemas.tracking import TrackingRecordResponse
from linkshortener.services.link_store import SORT_INSERTION, SORT_VISITS, LinkStore
from linkshortener.services.tracking_store import TrackingStore

router = APIRouter(
    prefix="/api",
    dependencies=[Depends(api_rate_limiter), Depends(require_api_key)],
)


def _short_url(request: Request, short_key: str) -> str:
    base = settings.public_base_url or str(request.base_url)
    return f"{base.rstrip('/')}/{short_key}"


def _to_response(request: Request, link: Link, with_short_url: bool = True) -> LinkResponse:
    return LinkResponse(
        short_key=link.short_key,
        target_url=link.target_url,
        visit_count=link.visit_count,
        created_at=link.created_at,
        short_url=_short_url(request, link.short_key) if with_short_url else None,
    )


@router.post("/links",
          response_model=LinkResponse,
          status_code=status.HTTP_201_CREATED
)
def create_link(req: CreateLinkRequest, request: Request, store: LinkStore = Depends(get_link_store)):
    link = store.upsert(req.short_key, req.target_url)
    return _to_response(request, link)


@router.get("/links", response_model=LinkListResponse)
def list_links(
    request: Request,
    sort: str = Query(default=SORT_VISITS, pattern=f"^({SORT_VISITS}|{SORT_INSERTION})$"),
    store: LinkStore = Depends(get_link_store),
):
    links = store.list_all(sort_by=sort)
    return LinkListResponse(count=len(links), data=[_to_response(request, link) for link in links])


@router.get("/links/{short_key}", response_model=LinkResponse)
def get_link(short_key: str, request: Request, store: LinkStore = Depends(get_link_store)):
    return _to_response(request, store.find_by_key(short_key))


@router.put("/links/{short_key}", response_model=LinkResponse)
def update_link(
    short_key: str,
    req: UpdateLinkRequest,
    request: Request,
    store: LinkStore = Depends(get_link_store),
):
    return _to_response(request, store.update_target(short_key, req.target_url))


@router.delete("/links/{short_key}", response_model=LinkResponse)
def delete_link(short_key: str, request: Request, store: LinkStore = Depends(get_link_store)):
    return _to_response(request, store.delete(short_key), with_short_url=False)


@router.get("/links/{short_key}/tracking", response_model=TrackingRecordResponse)
def get_tracking(
    short_key: str,
    tracking: TrackingStore = Depends(get_tracking_store),
):
    return tracking.find_by_key(short_key)
