from pathlib import Path
import argparse
import sys

import uvicorn

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve mission audio clips over HTTP")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="Restart on code changes")
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    uvicorn.run("backend.main:app", host=args.host, port=args.port, reload=args.reload)
