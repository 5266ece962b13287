from __future__ import annotations

from fastapi import APIRouter, Request

from ..coursework import config

router = APIRouter(tags=["System"])


@router.get("/health")
def health(request: Request):
    store = getattr(request.app.state, "store", None)
    return {
        "status": "ok" if store is not None else "starting",
        "store": type(store).__name__ if store is not None else None,
        "backend": config.STORE_BACKEND,
    }
