"""
Centralized router registry for all API endpoints
"""
from . import (
    approval_sessions,  # Share-link approval sessions and batch decision submission
    posts,  # Post editing, status lifecycle and edit locks
)

# All routers to be registered with the FastAPI app
ROUTERS = [
    approval_sessions.router,
    posts.router,
]
