from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tariffsense import __version__
from tariffsense.api.routes_classify import router as classify_router

logger = logging.getLogger(__name__)

app = FastAPI(title="tariffsense API", version=__version__)
app.include_router(classify_router)


def _normalize_validation_errors(errors: List[Dict[str, Any]]) -> Dict[str, Any]:
    fields = []
    for err in errors:
        loc_parts = [str(part) for part in err.get("loc", ()) if part != "body"]
        path = ".".join(["request", *loc_parts]) if loc_parts else "request"
        fields.append({"path": path, "message": err.get("msg", "Invalid request")})
    return {"error": "VALIDATION_ERROR", "fields": fields}


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content=_normalize_validation_errors(exc.errors()))


@app.get("/health")
def health() -> Dict[str, Any]:
    return {"ok": True, "version": __version__}
