# app/main.py
from .config import settings
from .entrypoints.fastapi_app import create_app

# uvicorn app.main:app
app = create_app(enable_scheduler=settings.SCHED_ENABLED)
