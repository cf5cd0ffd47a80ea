"""ASGI entrypoint for the pairing API."""

from pairlink.api.app import create_app
from pairlink.containers import build_container

app = create_app(build_container())
