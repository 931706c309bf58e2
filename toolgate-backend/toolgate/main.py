import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from toolgate.api.routes import router
from toolgate.config import load_settings
from toolgate.services import Services, build_services
from toolgate.tools.registry import list_tools

log = logging.getLogger(__name__)

# run: uvicorn --factory toolgate.main:create_app


@asynccontextmanager
async def lifespan(app: FastAPI):
    services: Services = app.state.services
    await services.start()
    log.info("toolgate started execution_mode=%s", services.execution_mode)
    try:
        yield
    finally:
        await services.stop()
        log.info("toolgate stopped")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """services=None builds everything from the environment."""
    if services is None:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
        services = build_services(load_settings())
    app = FastAPI(title="Toolgate Backend", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "execution_mode": services.execution_mode,
            "tools": len(list_tools()),
        }

    return app
