#!/usr/bin/env python3
"""
Content approval engine server
"""
import os
import sys
import logging

from content_approval.core.config import get_settings
from content_approval.main import app

logger = logging.getLogger(__name__)

settings = get_settings()
logger.info("Starting Content Approval Engine ({})".format(settings.environment))
logger.info("Python version: {}".format(sys.version))

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
