"""Application settings and configuration helpers."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import List
from dotenv import load_dotenv, find_dotenv


class Settings:
    """Runtime configuration loaded from environment variables.

    Defaults are suitable for local development. Production should set
    explicit values via environment variables and Secret Manager.
    """

    APP_NAME: str = "Footer Studio API"
    API_PREFIX: str = "/api"

    # CORS
    CORS_ORIGINS: List[str]

    # GCP
    GCP_PROJECT: str
    REGION: str
    FIRESTORE_DATABASE_ID: str
    JOBS_COLLECTION: str

    # Cloud Tasks
    TASKS_QUEUE: str
    TASKS_TARGET_URL: str
    TASKS_SERVICE_ACCOUNT_EMAIL: str
    TASKS_EMULATE: bool

    # Images
    IMAGE_HOST_MARKER: str
    MAX_IMAGE_MB: int
    IMAGE_FETCH_TIMEOUT_S: float

    # Slicing service
    SLICER_URL: str
    SLICER_API_KEY: str

    # Vision extraction
    EDGE_COLOR_THRESHOLD: float
    EDGE_MIN_STRENGTH: float

    # Render capture
    RENDER_WIDTH: int
    RENDER_TIMEOUT_MS: int

    # LLM (correction)
    GEMINI_API_KEY: str
    GEMINI_MODEL: str
    OPENROUTER_API_KEY: str
    OPENROUTER_MODEL: str
    LLM_PROMPT_VERSION: str

    # Job event stream
    EVENTS_POLL_INTERVAL_S: float

    # Refinement loop
    REFINE_MAX_ATTEMPTS: int
    REFINE_MIN_IMPROVEMENT: int

    def __init__(self) -> None:
        # Load .env once (supports parent directories)
        load_dotenv(find_dotenv(), override=False)
        self.CORS_ORIGINS = self._get_list("CORS_ORIGINS", default="*")

        self.GCP_PROJECT = os.getenv("GCP_PROJECT", os.getenv("GOOGLE_CLOUD_PROJECT", ""))
        self.REGION = os.getenv("REGION", "europe-west4")
        self.FIRESTORE_DATABASE_ID = os.getenv("FIRESTORE_DATABASE_ID", "(default)")
        self.JOBS_COLLECTION = os.getenv("JOBS_COLLECTION", "footer_processing_jobs")

        self.TASKS_QUEUE = os.getenv("TASKS_QUEUE", "footer-process-queue")
        self.TASKS_TARGET_URL = os.getenv("TASKS_TARGET_URL", "")  # e.g., https://<run-url>/api/tasks/process
        self.TASKS_SERVICE_ACCOUNT_EMAIL = os.getenv("TASKS_SERVICE_ACCOUNT_EMAIL", "")
        self.TASKS_EMULATE = os.getenv("TASKS_EMULATE", "true").lower() == "true"

        # Slicing expects Cloudinary-hosted images (crop URLs are derived from them)
        self.IMAGE_HOST_MARKER = os.getenv("IMAGE_HOST_MARKER", "cloudinary.com")
        self.MAX_IMAGE_MB = int(os.getenv("MAX_IMAGE_MB", "10"))
        self.IMAGE_FETCH_TIMEOUT_S = float(os.getenv("IMAGE_FETCH_TIMEOUT_S", "30"))

        self.SLICER_URL = os.getenv("SLICER_URL", "")
        self.SLICER_API_KEY = os.getenv("SLICER_API_KEY", "")

        self.EDGE_COLOR_THRESHOLD = float(os.getenv("EDGE_COLOR_THRESHOLD", "35"))
        self.EDGE_MIN_STRENGTH = float(os.getenv("EDGE_MIN_STRENGTH", "0.3"))

        self.RENDER_WIDTH = int(os.getenv("RENDER_WIDTH", "600"))
        self.RENDER_TIMEOUT_MS = int(os.getenv("RENDER_TIMEOUT_MS", "30000"))

        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
        self.GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
        self.OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "meta-llama/llama-3.3-70b-instruct:free")
        self.LLM_PROMPT_VERSION = os.getenv("LLM_PROMPT_VERSION", "v1")

        # Re-read interval while an events stream waits on the change feed
        self.EVENTS_POLL_INTERVAL_S = float(os.getenv("EVENTS_POLL_INTERVAL_S", "15"))

        self.REFINE_MAX_ATTEMPTS = max(1, int(os.getenv("REFINE_MAX_ATTEMPTS", "3")))
        self.REFINE_MIN_IMPROVEMENT = max(0, int(os.getenv("REFINE_MIN_IMPROVEMENT", "1")))

    @staticmethod
    def _get_list(name: str, default: str = "") -> List[str]:
        raw = os.getenv(name, default)
        return [item.strip() for item in raw.split(",") if item.strip()] or ["*"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
