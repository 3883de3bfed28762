"""FastAPI application setup for the Velopass advisor."""

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import router as api_router

app = FastAPI(title="Velopass Advisor")


@app.exception_handler(StarletteHTTPException)
async def not_found_as_json(request: Request, exc: StarletteHTTPException):
    """Unknown routes get the same JSON envelope as failed runs."""
    if exc.status_code == 404:
        return JSONResponse(status_code=404, content={"success": False, "error": "Route not found."})
    return await http_exception_handler(request, exc)


# API routes
app.include_router(api_router, prefix="/api")
