from pathlib import Path
import argparse
import json
import os
import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from backend import config
from storage.segment_index import SegmentIndex


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Register archived audio segments in the index")
    parser.add_argument(
        "rows",
        help='JSON file with a list of {"channel_id", "start", "end", "url"} objects',
    )
    parser.add_argument("--db", default=config.DB_PATH)
    return parser.parse_args()


def register_segments(rows_path: str, db_path: str) -> list[int]:
    with open(rows_path, "r", encoding="utf-8") as f:
        payload = json.load(f)

    os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
    index = SegmentIndex(db_path=db_path)
    index.init_db()

    rows = [
        (int(item["start"]), int(item["end"]), str(item["url"]), str(item["channel_id"]))
        for item in payload
    ]
    return index.add_segments(rows)


def main() -> int:
    args = parse_args()
    ids = register_segments(args.rows, args.db)
    print(f"Registered {len(ids)} segments in {args.db}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
