import os

from dotenv import load_dotenv

load_dotenv()

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# -------------------- Auth -------------------- #
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-key-change-me")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))

# -------------------- Database -------------------- #
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "school_portal")
TX_MAX_WAIT_MS = int(os.getenv("TX_MAX_WAIT_MS", 10_000))
TX_TIMEOUT_MS = int(os.getenv("TX_TIMEOUT_MS", 30_000))

# -------------------- Storage -------------------- #
UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "/static")

# -------------------- AI provider -------------------- #
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
AI_MODEL = os.getenv("AI_MODEL", "gemini-2.0-flash-exp")
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", 30))

# -------------------- HTTP -------------------- #
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
PORT = int(os.getenv("PORT", 8000))


def is_production() -> bool:
    return APP_ENV.lower() == "production"
