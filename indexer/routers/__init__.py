"""Router package: collects all API routers and registers them on the FastAPI app."""

from fastapi import FastAPI

from indexer.routers import accounts, rounds


def register_all_routers(app: FastAPI):
    app.include_router(rounds.router)
    app.include_router(accounts.router)
