"""
HTTP API for the metric node (dashboard JSON datasource contract).

Endpoints (GET or POST, JSON responses):
- /             - identify
- /search       - active source names
- /query        - range query, timeseries/table results
- /annotations  - always []
- /tag-keys     - always []
- /tag-values   - always []
"""

from __future__ import annotations

import json

from fastapi import FastAPI, HTTPException, Request
from loguru import logger
from starlette.concurrency import run_in_threadpool

from . import __version__
from .errors import QueryRequestError, StoreQueryError
from .query import QueryTranslator, SearchProvider

METHODS = ["GET", "POST"]
IDENTIFY_MESSAGE = "Hello! API is working!"


async def _read_json(request: Request):
    body = await request.body()
    if not body.strip():
        raise HTTPException(status_code=400, detail="Request body is required")
    try:
        return json.loads(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid JSON body: {e}") from e


def create_app(translator: QueryTranslator, search: SearchProvider) -> FastAPI:
    """Build the FastAPI app around a query translator and search provider."""
    app = FastAPI(title="metric-node", version=__version__)

    @app.api_route("/", methods=METHODS)
    def identify() -> dict:
        return {"message": IDENTIFY_MESSAGE}

    @app.api_route("/search", methods=METHODS)
    def search_sources() -> list[str]:
        return search.search()

    @app.api_route("/query", methods=METHODS)
    async def query(request: Request) -> list[dict]:
        payload = await _read_json(request)
        try:
            return await run_in_threadpool(translator.query, payload)
        except QueryRequestError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except StoreQueryError as e:
            logger.error(f"Query failed: {e}")
            raise HTTPException(status_code=502, detail=str(e)) from e

    @app.api_route("/annotations", methods=METHODS)
    def annotations() -> list:
        return []

    @app.api_route("/tag-keys", methods=METHODS)
    def tag_keys() -> list:
        return []

    @app.api_route("/tag-values", methods=METHODS)
    def tag_values() -> list:
        return []

    return app
