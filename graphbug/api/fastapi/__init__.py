from fastapi import FastAPI

from graphbug.api.fastapi.routes import register_routes
from graphbug.core.config import settings


class FastAPIApp:
    def __init__(self, lifespan=None):
        self.app = FastAPI(title=settings.app_name, lifespan=lifespan)
        register_routes(self.app)

    def get_app(self) -> FastAPI:
        return self.app
