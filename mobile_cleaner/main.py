import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mobile_cleaner.config import settings
from mobile_cleaner.routes.sessions import router as sessions_router
from mobile_cleaner.services.session import SessionStore

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Mobile Cleaner API", version="1.0.0", debug=settings.DEBUG)
app.state.sessions = SessionStore()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Row-Count", "X-Total-Rows", "X-Valid", "X-Duplicates",
                    "X-Invalid-Pattern", "X-Invalid-Length", "X-Fast-Mode"],
)


@app.get("/")
def root():
    return {"message": "Mobile Cleaner API is running", "version": "1.0.0"}


@app.get("/health")
def health():
    return {"status": "healthy"}


app.include_router(sessions_router)
