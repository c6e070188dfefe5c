#!/usr/bin/env python3
"""
Run script for the Optihub pipeline backend
"""
import uvicorn

from optihub.config.settings import settings
from optihub.main import app

if __name__ == "__main__":
    uvicorn.run(app, host=settings.host, port=settings.port, reload=settings.debug)
