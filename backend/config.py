import os
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = Path(os.getenv("CLIP_DATA_DIR", str(ROOT_DIR / "data")))

DB_PATH = os.getenv("CLIP_DB_PATH", str(DATA_DIR / "segments.db"))
CLIP_DIR = os.getenv("CLIP_CACHE_DIR", str(DATA_DIR / "clips"))
EXPORT_DIR = os.getenv("CLIP_EXPORT_DIR", str(DATA_DIR / "exports"))

SOX_BIN = os.getenv("CLIP_SOX_BIN", "sox")
FFMPEG_BIN = os.getenv("CLIP_FFMPEG_BIN", "ffmpeg")
AAC_ENCODER = os.getenv("CLIP_AAC_ENCODER", "aac")

PCM_SAMPLE_RATE = int(os.getenv("CLIP_PCM_SAMPLE_RATE", "44100"))
PCM_CHANNELS = int(os.getenv("CLIP_PCM_CHANNELS", "1"))

FETCH_WORKERS = int(os.getenv("CLIP_FETCH_WORKERS", "4"))
FETCH_TIMEOUT_SECONDS = float(os.getenv("CLIP_FETCH_TIMEOUT_SECONDS", "60"))
PROCESS_TIMEOUT_SECONDS = float(os.getenv("CLIP_PROCESS_TIMEOUT_SECONDS", "300"))

STREAM_QUEUE_CHUNKS = 64

SEGMENTS_DEFAULT_LIMIT = 50
SEGMENTS_MAX_LIMIT = 500

LOG_LEVEL = os.getenv("CLIP_LOG_LEVEL", "INFO")
