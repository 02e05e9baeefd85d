"""Placeholder for the authentication route collection.

Sign-up, sign-in and token handling are provided by the deployment; this
collection only reserves the ``/api/auth`` prefix so traffic below it never
falls through to the application's catch-all handler.
"""

from fastapi import FastAPI


def create_auth_app() -> FastAPI:
    return FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
