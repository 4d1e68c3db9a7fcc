"""
Application Configuration
"""
from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from typing import Optional

VALID_WHATSAPP_PROVIDERS = {"wppconnect"}
VALID_LLM_PROVIDERS = {"", "groq", "ollama"}


def parse_csv_setting(value: str) -> list[str]:
    """Split a comma-separated setting into clean, non-empty values."""
    return [v.strip() for v in value.split(",") if v.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    APP_NAME: str = "PPID Assistant"
    DEBUG: bool = False
    LOG_FILE: str = ""  # empty = stdout only
    ALLOWED_ORIGINS: str = ""  # comma-separated CORS origins for the operator console
    CONNECTION_CHECK_INTERVAL_SECONDS: int = 60

    # Persisted state
    DATA_PATH: str = "./data"
    DOCS_FOLDER: str = "./dokumen_ppid"
    VECTOR_STORE_PATH: str = "./data/vectorstore"

    # WhatsApp Gateway (WPPConnect)
    WHATSAPP_GATEWAY_URL: str = "http://localhost:3000"
    WHATSAPP_PROVIDER: str = "wppconnect"
    WHATSAPP_MAX_RETRIES: int = 3
    WHATSAPP_TRANSIENT_STATUS_CODES: str = "502,503,504,429"
    # Comma-separated chat ids that receive a WhatsApp alert on handover requests
    WHATSAPP_ADMIN_NUMBERS: str = ""
    WA_SESSION_PATH: str = "./data/wa_session"

    @field_validator("WHATSAPP_PROVIDER", mode="before")
    @classmethod
    def validate_whatsapp_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in VALID_WHATSAPP_PROVIDERS:
            raise ValueError(
                f"WHATSAPP_PROVIDER='{v}' is not supported. "
                f"Allowed: {', '.join(sorted(VALID_WHATSAPP_PROVIDERS))}"
            )
        return v

    @field_validator("WHATSAPP_GATEWAY_URL", mode="before")
    @classmethod
    def normalize_gateway_url(cls, v: str) -> str:
        """Accept bare host:port values."""
        if v and not v.startswith("http"):
            v = f"http://{v}"
        return v.rstrip("/")

    @field_validator("WHATSAPP_MAX_RETRIES", mode="after")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("WHATSAPP_MAX_RETRIES must be at least 1")
        return v

    # Shared secret the gateway sends in X-Webhook-Secret; empty = unchecked
    WHATSAPP_WEBHOOK_SECRET: str = ""

    # Operator console
    OPERATOR_API_KEY: str = ""  # openssl rand -hex 32
    OPERATOR_COMMAND_TIMEOUT_SECONDS: float = 45.0

    # Language model backends
    LLM_PROVIDER: str = ""  # empty = groq when a key exists, else ollama
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "llama-3.3-70b-versatile"
    GROQ_MAX_TOKENS: int = 1024
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "ppid-assistant"
    OLLAMA_EMBED_MODEL: str = "nomic-embed-text"
    GENERATION_TIMEOUT_SECONDS: float = 30.0
    EMBEDDING_TIMEOUT_SECONDS: float = 30.0

    @field_validator("LLM_PROVIDER", mode="before")
    @classmethod
    def validate_llm_provider(cls, v: str | None) -> str:
        v = (v or "").strip().lower()
        if v not in VALID_LLM_PROVIDERS:
            raise ValueError(
                f"LLM_PROVIDER='{v}' is not supported. Allowed: groq, ollama"
            )
        return v

    # RAG
    RAG_TOP_K: int = 6
    RAG_CHUNK_SIZE: int = 15000  # large chunks keep multi-page guides intact
    RAG_CHUNK_OVERLAP: int = 500

    # Pacing
    RATE_LIMIT_COOLDOWN_SECONDS: float = 2.0
    RATE_LIMIT_CLEANUP_MAX_AGE_SECONDS: float = 30.0
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS: int = 300
    MIN_REPLY_DELAY_MS: int = 100
    MAX_REPLY_DELAY_MS: int = 500
    TYPING_DELAY_PER_CHAR_MS: int = 15
    TYPING_DELAY_CAP_MS: int = 2000
    WELCOME_PAUSE_SECONDS: float = 1.0

    # Sessions
    SESSION_INACTIVITY_MINUTES: int = 30
    SESSION_PURGE_HOURS: int = 24
    SESSION_BUFFER_SIZE: int = 30
    SWEEP_INTERVAL_SECONDS: int = 300
    SESSION_SNAPSHOT_INTERVAL_SECONDS: int = 60
    INDEX_REFRESH_INTERVAL_SECONDS: int = 300

    # Recaps
    RECAP_MAX_ENTRIES: int = 1000

    # Intent phrase lists (comma-separated, matched case-insensitively)
    HANDOFF_PHRASES: str = (
        "bicara dengan manusia,hubungi cs,customer service,bicara dengan admin,"
        "mau komplain,butuh bantuan manusia,operator,hubungi petugas,"
        "sambungkan ke cs,minta cs,bicara dengan cs,ingin bicara dengan orang,"
        "mau bicara dengan orang,berbicara dengan petugas,terhubung dengan cs,"
        "mau ngobrol sama orang"
    )
    GRATITUDE_PHRASES: str = "terima kasih,makasih,thanks,matur nuwun,suwun"
    CLOSING_PHRASES: str = (
        "tidak ada,tidak,sudah cukup,cukup,itu saja,terima kasih,makasih,"
        "thanks,ok,oke,siap,sudah,selesai,clear"
    )
    FOLLOW_UP_TRIGGERS: str = (
        "formulir,form,silakan mengisi,dapat mengunjungi,"
        "informasi lebih lanjut,prosesnya,langkah"
    )

    @field_validator("RECAP_MAX_ENTRIES", "SESSION_BUFFER_SIZE", "RAG_TOP_K", mode="after")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_cross_fields(self) -> "Settings":
        """Cross-field checks that must fail at startup, not mid-conversation."""
        import warnings

        if self.MIN_REPLY_DELAY_MS > self.MAX_REPLY_DELAY_MS:
            raise ValueError("MIN_REPLY_DELAY_MS must not exceed MAX_REPLY_DELAY_MS")

        if self.RAG_CHUNK_OVERLAP >= self.RAG_CHUNK_SIZE:
            raise ValueError("RAG_CHUNK_OVERLAP must be smaller than RAG_CHUNK_SIZE")

        if self.SESSION_PURGE_HOURS * 60 < self.SESSION_INACTIVITY_MINUTES:
            raise ValueError(
                "SESSION_PURGE_HOURS must cover at least SESSION_INACTIVITY_MINUTES"
            )

        if self.LLM_PROVIDER == "groq" and not self.GROQ_API_KEY:
            warnings.warn(
                "LLM_PROVIDER=groq without GROQ_API_KEY; set it from the operator "
                "settings before generation can succeed",
                stacklevel=2,
            )

        if not self.OPERATOR_API_KEY and not self.DEBUG:
            warnings.warn(
                "OPERATOR_API_KEY is empty; operator endpoints are locked. "
                "Set one with: openssl rand -hex 32",
                stacklevel=2,
            )

        return self

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
