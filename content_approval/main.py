"""
ASGI entry point.

    uvicorn content_approval.main:app
"""
from content_approval.core.app_factory import create_app

app = create_app()
