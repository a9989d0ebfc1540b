from dataclasses import asdict
from pathlib import Path
import argparse
import json
import logging
import os
import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from backend import config
from pipeline.assembler import ClipAssembler
from pipeline.errors import AssemblyError, NoAudioDataError
from pipeline.models import RequestVars, Timeouts
from pipeline.tools import discover_tools
from sources.segment_fetcher import SegmentFetcher
from sources.slice_builder import SliceBuilder
from storage.segment_index import SegmentIndex


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Assemble mission audio for a time window")
    parser.add_argument("--mission", type=int, required=True)
    parser.add_argument("--channels", required=True, help="Comma separated channel ids")
    parser.add_argument("--start", type=int, required=True, help="Window start in ms")
    parser.add_argument("--duration", type=int, required=True, help="Window length in ms")
    parser.add_argument("--format", default="m4a", help="aac, m4a or ogg (anything else becomes mp3)")
    parser.add_argument(
        "--stream",
        action="store_true",
        help="Stream slice by slice instead of saving one file",
    )
    parser.add_argument("--out", help="Stream target file (default: stdout)")
    return parser.parse_args()


def build_assembler(index: SegmentIndex) -> ClipAssembler:
    tools = discover_tools(sox_bin=config.SOX_BIN, ffmpeg_bin=config.FFMPEG_BIN)
    return ClipAssembler(
        slice_builder=SliceBuilder(index=index, clip_dir=config.CLIP_DIR),
        fetcher=SegmentFetcher(clip_dir=config.CLIP_DIR, request_timeout=config.FETCH_TIMEOUT_SECONDS),
        tools=tools,
        export_dir=config.EXPORT_DIR,
        sample_rate=config.PCM_SAMPLE_RATE,
        channels=config.PCM_CHANNELS,
        aac_encoder=config.AAC_ENCODER,
        fetch_workers=config.FETCH_WORKERS,
        timeouts=Timeouts(
            fetch_seconds=config.FETCH_TIMEOUT_SECONDS,
            process_seconds=config.PROCESS_TIMEOUT_SECONDS,
        ),
    )


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        rv = RequestVars(
            mission=args.mission,
            channels=tuple(args.channels.split(",")),
            format=args.format,
            start=args.start,
            duration=args.duration,
        )

        os.makedirs(config.CLIP_DIR, exist_ok=True)
        index = SegmentIndex(db_path=config.DB_PATH)
        index.init_db()
        assembler = build_assembler(index)

        if args.stream:
            if args.out:
                with open(args.out, "wb") as sink:
                    result = assembler.stream(rv, sink)
            else:
                result = assembler.stream(rv, sys.stdout.buffer)
                sys.stdout.buffer.flush()
        else:
            result = assembler.save(rv)

        summary = asdict(result)
        summary["output_format"] = result.output_format.value
        print(json.dumps(summary, indent=2), file=sys.stderr if args.stream and not args.out else sys.stdout)
        return 0
    except NoAudioDataError as exc:
        print(json.dumps({"completed": False, "no_data": True, "error": str(exc)}, indent=2), file=sys.stderr)
        return 1
    except (AssemblyError, ValueError) as exc:
        print(json.dumps({"completed": False, "error": str(exc)}, indent=2), file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
