from __future__ import annotations

import argparse
import json
import sys

import uvicorn


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="branchwatch")
    sub = parser.add_subparsers(dest="subcommand", required=True)

    # --- API server ---
    serve = sub.add_parser("serve", help="Start the Branchwatch HTTP API")
    serve.add_argument("--host", default="127.0.0.1", help="Bind host")
    serve.add_argument("--port", type=int, default=8787, help="Bind port")
    serve.add_argument("--log-level", default="info", help="Uvicorn log level")

    # --- Data ---
    seed = sub.add_parser("seed", help="Load the reference branches (and sample incidents) into the data dir")
    seed.add_argument("--no-samples", action="store_true", help="Only seed branches")

    # --- Settings ---
    sub.add_parser("settings", help="Print current LLM and incident settings (secrets masked)")

    # --- One-off classification ---
    classify = sub.add_parser("classify", help="Classify evidence with the active provider and print the result")
    classify.add_argument("--text", default=None, help="Written description of the incident")
    classify.add_argument("--audio-transcript", default=None, help="Transcribed audio report")
    classify.add_argument("--photo", default=None, help="Media reference of an uploaded photo")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.subcommand == "serve":
        uvicorn.run(
            "branchwatch.server:app",
            host=args.host,
            port=args.port,
            reload=False,
            log_level=args.log_level,
        )
        return 0

    if args.subcommand == "seed":
        from branchwatch.server import build_service

        svc = build_service(seed=False)
        counts = svc.seed(with_samples=not args.no_samples)
        print(f"Seeded {counts['branches']} branches and {counts['incidents']} incidents")
        return 0

    if args.subcommand == "settings":
        from branchwatch.llm.settings import get_settings
        from branchwatch.settings import get_store

        out = {
            "llm": get_settings().to_public_dict(),
            "incidents": get_store().load().model_dump(mode="json"),
        }
        print(json.dumps(out, indent=2, ensure_ascii=False))
        return 0

    if args.subcommand == "classify":
        from branchwatch.classifier import build_classifier
        from branchwatch.errors import BranchwatchError
        from branchwatch.evidence import normalize_evidence
        from branchwatch.settings import get_store

        try:
            bundle = normalize_evidence(args.photo, args.audio_transcript, args.text)
            result = build_classifier().classify(bundle, get_store().load())
        except BranchwatchError as e:
            print(f"ERROR: {e.message}", file=sys.stderr)
            return 1
        print(result.model_dump_json(indent=2))
        return 0

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
