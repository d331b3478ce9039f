import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the working directory, without overriding the real environment
load_dotenv()

ORIGIN = os.getenv("CALLMIBRO_ORIGIN", "http://localhost:3000")

APP_NAME = os.getenv("CALLMIBRO_APP_NAME", "callmibro")

# Bump to retire every previously cached asset on the next activation
CACHE_VERSION = int(os.getenv("CALLMIBRO_CACHE_VERSION", "1"))

DATA_DIR = Path(os.getenv("CALLMIBRO_DATA_DIR", Path.home() / ".callmibro"))

LOG_LEVEL = os.getenv("CALLMIBRO_LOG_LEVEL", "INFO")

KV_STORE_FILENAME = "callmibro-offline.db"

# Assets to cache for offline use
STATIC_ASSETS = [
    "/",
    "/index.html",
    "/manifest.json",
    "/hero.jpg",
    "/grid-pattern.svg",
    "/icons/apple-touch-icon.png",
    "/icons/ac.svg",
    "/icons/battery.svg",
    "/icons/battery2.svg",
    "/icons/certified.svg",
    "/icons/mobile-screen.svg",
    "/icons/ontime.svg",
    "/icons/pricing.svg",
    "/icons/secure.svg",
    "/icons/speaker.svg",
    "/icons/tv.svg",
]

# API routes that are fetched fresh and cached for offline use
API_ROUTES = [
    "/api/services",
    "/api/spare-parts",
]
