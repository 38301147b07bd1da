import os
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")

def _csv(name: str, default: str = "") -> list:
    raw = os.getenv(name, default).strip()
    return [item.strip() for item in raw.split(",") if item.strip()]

# Video generation service (Veo through the KIE API)
VEO_API_KEY = os.getenv("VEO_API_KEY", "")
VEO_API_BASE = os.getenv("VEO_API_BASE", "https://api.kie.ai/api/v1/veo").rstrip("/")
VEO_MODEL = os.getenv("VEO_MODEL", "veo3_fast")
VEO_ASPECT_RATIO = os.getenv("VEO_ASPECT_RATIO", "9:16")
VEO_WATERMARK = os.getenv("VEO_WATERMARK", "")

# Image generation service (reference images)
IMAGE_API_KEY = os.getenv("IMAGE_API_KEY", "") or VEO_API_KEY
IMAGE_API_BASE = os.getenv("IMAGE_API_BASE", "https://api.kie.ai/api/v1/playground").rstrip("/")
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "google/nano-banana-edit")
IMAGE_POLL_INTERVAL_S = float(os.getenv("IMAGE_POLL_INTERVAL_S", "3"))
IMAGE_POLL_MAX_ATTEMPTS = int(os.getenv("IMAGE_POLL_MAX_ATTEMPTS", "60"))

# Object storage (Supabase Storage)
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY", "")
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "ana-images")
SIGNED_URL_TTL_S = int(os.getenv("SIGNED_URL_TTL_S", "86400"))

# Polling and retry policy
POLL_INTERVAL_S = float(os.getenv("POLL_INTERVAL_S", "10"))
POLL_MAX_ATTEMPTS = int(os.getenv("POLL_MAX_ATTEMPTS", "30"))
SUBMIT_RETRIES = int(os.getenv("SUBMIT_RETRIES", "1"))
DOWNLOAD_RETRIES = int(os.getenv("DOWNLOAD_RETRIES", "3"))
RETRY_BACKOFF_S = float(os.getenv("RETRY_BACKOFF_S", "2"))

# Presenter identity
CHARACTER_SEED = int(os.getenv("CHARACTER_SEED", "30001"))
DEFAULT_PRESENTER_IMAGE_URLS = [
    "https://raw.githubusercontent.com/laligafantasyspainpro-ux/imagenes-presentadores/main/ana-main/Ana-001.jpeg",
    "https://raw.githubusercontent.com/laligafantasyspainpro-ux/imagenes-presentadores/main/ana-coleta-01.png",
    "https://raw.githubusercontent.com/laligafantasyspainpro-ux/imagenes-presentadores/main/ana-coleta-02.png",
    "https://raw.githubusercontent.com/laligafantasyspainpro-ux/imagenes-presentadores/main/ana-coleta-03.png",
]


def presenter_image_urls() -> list:
    """Identity images from PRESENTER_IMAGE_URLS, or the shipped set when unset."""
    return _csv("PRESENTER_IMAGE_URLS") or list(DEFAULT_PRESENTER_IMAGE_URLS)


PRESENTER_IMAGE_URLS = presenter_image_urls()
PRESENTER_DESCRIPTION = os.getenv(
    "PRESENTER_DESCRIPTION",
    "32-year-old Spanish sports analyst, long wavy dark hair, warm brown eyes, "
    "navy blazer over a white blouse, professional studio lighting",
)

# Working directories
SESSIONS_DIR = os.getenv("SESSIONS_DIR", os.path.join(os.getcwd(), "output", "sessions"))
FRAMES_DIR = os.getenv("FRAMES_DIR", os.path.join(os.getcwd(), "output", "frames"))

# Finished sessions whose progress events stay in memory for /events
EVENT_HISTORY_SESSIONS = int(os.getenv("EVENT_HISTORY_SESSIONS", "100"))

# Assembly
OUTRO_PATH = os.getenv("OUTRO_PATH", "").strip()
OUTRO_FREEZE_S = float(os.getenv("OUTRO_FREEZE_S", "0.8"))
CROSSFADE_S = float(os.getenv("CROSSFADE_S", "0.5"))
VIDEO_WIDTH = int(os.getenv("VIDEO_WIDTH", "1080"))
VIDEO_HEIGHT = int(os.getenv("VIDEO_HEIGHT", "1920"))
FPS = int(os.getenv("FPS", "30"))

# Captions
CAPTION_FONT = os.getenv("CAPTION_FONT", "Arial Black")
CAPTION_WORDS_PER_SECOND = float(os.getenv("CAPTION_WORDS_PER_SECOND", "2.5"))

# Dialogue rules
FORBIDDEN_NAMES = _csv(
    "FORBIDDEN_NAMES",
    "Pedri,Gavi,Lewandowski,Vinicius,Benzema,Griezmann,Muniain,Oyarzabal,Morata",
)

# Comma-separated list of allowed origins for CORS.
ALLOWED_ORIGINS = _csv("ALLOWED_ORIGINS") or ["*"]

def has_all_keys() -> bool:
    keys_present = all([VEO_API_KEY, IMAGE_API_KEY, SUPABASE_URL, SUPABASE_SERVICE_KEY])
    if not keys_present:
        missing = []
        if not VEO_API_KEY: missing.append("VEO_API_KEY")
        if not IMAGE_API_KEY: missing.append("IMAGE_API_KEY")
        if not SUPABASE_URL: missing.append("SUPABASE_URL")
        if not SUPABASE_SERVICE_KEY: missing.append("SUPABASE_SERVICE_KEY")
        logger.warning(f"Missing API keys: {', '.join(missing)}")
    return keys_present
