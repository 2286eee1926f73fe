from fastapi import FastAPI
from . import health, github, repository

def register_routes(app: FastAPI):
    app.include_router(health.router)
    app.include_router(github.router)
    app.include_router(repository.router)
