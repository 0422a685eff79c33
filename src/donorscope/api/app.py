"""FastAPI app factory for the donorscope analysis API."""

from fastapi import FastAPI

from donorscope.api.analysis import router as analysis_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(title="donorscope Analysis API", version="0.1")
    app.include_router(analysis_router)

    @app.get("/healthz", tags=["health"])
    def healthz():
        return {"status": "ok"}

    return app


# For uvicorn, expose `app` at module level
app = create_app()

__all__ = ["app", "create_app"]
