"""ASGI entrypoint: ``uvicorn apps.api.main:app``.

Building the app here rather than in quizmint.app keeps that module free
of upstream clients at import time, so tests can call create_app() with
fakes.
"""

from quizmint.app import create_app

app = create_app()
