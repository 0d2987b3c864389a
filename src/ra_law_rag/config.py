# src/ra_law_rag/config.py
from __future__ import annotations

from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

from ra_law_rag.backend.utils.errors import ConfigurationError


def _find_repo_root(start: Path) -> Path:
    """
    Best-effort repository root discovery.
    - Prefer the closest ancestor containing `pyproject.toml`.
    - Fallback to the start directory if not found.
    """
    cur = start.resolve()
    for _ in range(20):
        if (cur / "pyproject.toml").exists():
            return cur
        if cur.parent == cur:
            break
        cur = cur.parent
    return start.resolve()


PACKAGE_ROOT = Path(__file__).resolve().parent
REPO_ROOT = _find_repo_root(PACKAGE_ROOT)

# Load .env into process environment early; explicit env vars still win.
load_dotenv(str(REPO_ROOT / ".env"), override=False)

DATA_ROOT = REPO_ROOT / ".data"


class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"

    # Primary store. Production runs on postgresql+asyncpg with the full-text procedures installed.
    RA_LAW_RAG_DATABASE_URL: str = f"sqlite+aiosqlite:///{DATA_ROOT / 'ra_law_rag.db'}"

    # External rerank service (semantic search + rerank in one call).
    RERANK_SERVICE_URL: str | None = None
    RERANK_SERVICE_KEY: str | None = None
    RERANK_THRESHOLD: float = 0.3
    RERANK_CANDIDATE_MULTIPLIER: int = 3
    RERANK_MAX_CANDIDATES: int = 50
    RERANK_REQUIRED: bool = True

    # Per-tier timeouts (seconds) and the outer request budget.
    RERANK_TIMEOUT_S: float = 10.0
    KEYWORD_TIMEOUT_S: float = 10.0
    FTS_TIMEOUT_S: float = 10.0
    REQUEST_BUDGET_S: float = 20.0

    # Keyword tier.
    KB_KEYWORD_MAX_COUNT: int = 10
    PRACTICE_KEYWORD_MAX_COUNT: int = 8
    KB_KEYWORD_ROW_LIMIT: int = 50
    PRACTICE_KEYWORD_ROW_LIMIT: int = 30

    # Full-text fallback tier.
    KB_FTS_LIMIT: int = 20
    PRACTICE_FTS_LIMIT: int = 10
    FTS_RANK_FLOOR: float = 0.001

    # Caller limits and hard caps.
    KB_DEFAULT_LIMIT: int = 8
    PRACTICE_DEFAULT_LIMIT: int = 5
    KB_DEFAULT_SNIPPET_LENGTH: int = 4000
    PRACTICE_SNIPPET_LENGTH: int = 4000
    KB_MAX_LIMIT: int = 30
    PRACTICE_MAX_LIMIT: int = 30
    MAX_QUERY_LENGTH: int = 4096

    # Telemetry sink.
    TELEMETRY_ENABLED: bool = True
    TELEMETRY_QUEUE_MAXSIZE: int = 256
    TELEMETRY_TIMEOUT_S: float = 5.0
    TELEMETRY_SERVICE_TYPE: str = "rag_search"
    TELEMETRY_MODEL_NAME: str = "dual_search"

    # Chunk-quality auditor thresholds.
    AUDIT_COVERAGE_MIN: float = 0.95
    AUDIT_OVERLAP_MAX_RATIO: float = 0.15
    AUDIT_GAP_TOLERANCE_CHARS: int = 20

    def missing_required(self) -> List[str]:
        """Names of required backend settings that are unset or blank."""
        missing: List[str] = []
        if not (self.RA_LAW_RAG_DATABASE_URL or "").strip():
            missing.append("RA_LAW_RAG_DATABASE_URL")
        if self.RERANK_REQUIRED:
            if not (self.RERANK_SERVICE_URL or "").strip():
                missing.append("RERANK_SERVICE_URL")
            if not (self.RERANK_SERVICE_KEY or "").strip():
                missing.append("RERANK_SERVICE_KEY")
        return missing

    def validate_required(self) -> None:
        """
        Fail fast at startup when a required backend credential is missing.
        Never called per request.
        """
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                message="missing required configuration",
                detail={"missing": missing},
            )
        for key in ("RERANK_TIMEOUT_S", "KEYWORD_TIMEOUT_S", "FTS_TIMEOUT_S", "REQUEST_BUDGET_S"):
            if float(getattr(self, key)) <= 0:
                raise ConfigurationError(
                    message="timeouts must be positive",
                    detail={"key": key},
                )

    model_config = SettingsConfigDict(
        env_file=str(REPO_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
