import uvicorn
from fastapi import FastAPI

from . import config
from .api.routes import router as api_router
from .db import Base, engine
from .pipeline import Pipeline
from .utils import get_logger
from . import models  # noqa: F401 ensure models are imported so tables are known

logger = get_logger(__name__)


def create_app(pipeline=None, bind=None):
    app = FastAPI(title="Auction sales pipeline")
    app.state.pipeline = pipeline or Pipeline()
    app.include_router(api_router)

    @app.on_event("startup")
    def on_startup():
        # Ensure database tables exist; migrations may own this in production
        Base.metadata.create_all(bind=bind or engine)
        if config.COLLECTION_ENABLED:
            app.state.pipeline.scheduler.start()

    @app.on_event("shutdown")
    def on_shutdown():
        app.state.pipeline.scheduler.stop()

    return app


app = create_app()


def run():
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
