from dataclasses import dataclass
import os
from dotenv import load_dotenv


load_dotenv()


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    firebase_project_id: str = os.getenv("FIREBASE_PROJECT_ID", "")
    firebase_web_api_key: str = os.getenv("FIREBASE_WEB_API_KEY", "")

    users_collection_id: str = os.getenv("MERITTRAC_USERS_COLLECTION", "users")
    subjects_collection_id: str = os.getenv("MERITTRAC_SUBJECTS_COLLECTION", "subjects")
    semesters_collection_id: str = os.getenv("MERITTRAC_SEMESTERS_COLLECTION", "semesters")
    assignments_collection_id: str = os.getenv("MERITTRAC_ASSIGNMENTS_COLLECTION", "teacherAssignments")
    marks_collection_id: str = os.getenv("MERITTRAC_MARKS_COLLECTION", "marks")

    gemini_api_key: str = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY", "")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    gemini_endpoint: str = os.getenv(
        "GEMINI_ENDPOINT",
        "https://generativelanguage.googleapis.com/v1beta",
    )

    http_timeout_seconds: float = _float_env("HTTP_TIMEOUT_SECONDS", 15.0)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    cors_allowed_origins: tuple[str, ...] = _split_csv(
        os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    )


settings = Settings()
