##########
# Imports
##########
import os
from dotenv import load_dotenv


#################
# Configuration
#################
load_dotenv()


def _env_bool(name: str, default: bool):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# MongoDB config
MONGODB_URI = os.getenv("MONGODB_URI")
DATABASE_NAME = os.getenv("DATABASE_NAME", "blog")

# Secret keys and JWT config
JWT_SECRET = os.getenv("JWT_SECRET")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_SECONDS = int(os.getenv("JWT_EXPIRE_SECONDS", "3600"))
SESSION_SECRET = os.getenv("SESSION_SECRET")
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))

# Cookies
AUTH_COOKIE_NAME = "jwt"
COOKIE_SECURE = _env_bool("COOKIE_SECURE", True)
COOKIE_SAMESITE = "none" if COOKIE_SECURE else "lax"

# Server
PORT = int(os.getenv("PORT", "5172"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
API_PREFIX = "/api/v1"
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://blog-api-frontend-self.vercel.app,https://blog-api-frontend-self.vercel.app,"
        "http://localhost:5173,https://localhost:5173",
    ).split(",")
    if origin.strip()
]

# Rate limiting (slowapi limit string)
RATE_LIMIT = os.getenv("RATE_LIMIT", "20/minute")
RATE_LIMIT_ENABLED = _env_bool("RATE_LIMIT_ENABLED", True)

# Query shaping
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# Avatars are stored on Cloudinary (configured through CLOUDINARY_URL)
AVATAR_SIZE = 128
AVATAR_FOLDER = os.getenv("AVATAR_FOLDER", "avatars")

REQUIRED_SETTINGS = ("MONGODB_URI", "JWT_SECRET", "SESSION_SECRET")


def missing_settings():
    """Names of required settings that are not configured"""
    return [name for name in REQUIRED_SETTINGS if not globals().get(name)]
