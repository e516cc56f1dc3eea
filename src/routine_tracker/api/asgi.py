"""ASGI entrypoint for the routine tracker API."""

from routine_tracker.api.app import create_app
from routine_tracker.containers import build_container

app = create_app(build_container())
