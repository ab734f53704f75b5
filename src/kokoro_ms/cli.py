"""
Command-Line Interface for kokoro-ms.

Serverless synthesis: runs the same TTSService the HTTP server uses, in
the current process.

Usage Examples:
    # Single text synthesis
    kokoro-ms --text "Hello there." --out hello.wav

    # Positional text, style mix, MP3
    kokoro-ms "Hello there." --voice af_sky.4+af_nicole.5 --format mp3 --out mix.mp3

    # Write chunks as they are produced
    kokoro-ms --file story.txt --stream --out story.wav

    # Batch: one output file per input line
    kokoro-ms --file inputs.txt --batch --out out_dir/

    # Dry run: normalized text, phonemes, token ids, chunk plan
    kokoro-ms --text "It costs $5." --dry-run --json

    # List registered voices
    kokoro-ms --voices

Exit Codes:
    0  success
    2  invalid input or configuration (bad voice, speed, format, ...)
    1  any other failure (model missing, inference or encoding error)

Environment Variables:
    KOKORO_MS_SETTINGS: Settings file (default config/settings.yaml)
    KOKORO_MS_MODEL_PATH / KOKORO_MS_VOICES_PATH: Asset overrides
    KOKORO_MS_LOG_LEVEL: 1-4
"""

from __future__ import annotations

import argparse
import json
import struct
import sys
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from kokoro_ms.core.config import ConfigValidationError, load_settings
from kokoro_ms.core.errors import TTSError, ValidationError
from kokoro_ms.core.logging import configure_logging, get_logger, info, set_request_id

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID = 2


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="kokoro-ms", description="kokoro-ms CLI (serverless synth)")

    # Input
    parser.add_argument("text_pos", nargs="?", help="Text to synthesize (positional)")
    parser.add_argument("--text", help="Text to synthesize")
    parser.add_argument("--file", help="Read the text from a file")
    parser.add_argument("--batch", action="store_true",
                        help="With --file: one item per non-empty line, --out is a directory")

    # Output
    parser.add_argument("--out", help="Output path (file, or dir with --batch)")
    parser.add_argument("--format", default="wav", choices=("wav", "mp3"), help="Container format")
    parser.add_argument("--stream", action="store_true", help="Write chunks as soon as they are produced")

    # Synthesis
    parser.add_argument("--voice", help="Voice or style mix, e.g. af_sky.4+af_nicole.5")
    parser.add_argument("--speed", type=float, default=1.0, help="Speaking speed multiplier")
    parser.add_argument("--language", help="Language hint (en-us, en-gb, es, fr-fr, it, pt-br, hi, ja, cmn)")
    parser.add_argument("--settings", help="Settings YAML (default: KOKORO_MS_SETTINGS or config/settings.yaml)")

    # Modes
    parser.add_argument("--dry-run", action="store_true", help="Print phonemes and tokens only, no inference")
    parser.add_argument("--voices", action="store_true", help="List registered voices")
    parser.add_argument("--json", action="store_true", help="Print JSON summary")

    return parser.parse_args(argv)


def _load_texts(args: argparse.Namespace) -> List[str]:
    """
    Collect input texts.

    Raises:
        ValidationError: No input, or conflicting input options.
    """
    text = args.text if args.text is not None else args.text_pos

    if args.file:
        if text is not None:
            raise ValidationError("Use --file without --text or positional text.")
        content = Path(args.file).read_text(encoding="utf-8")
        if not args.batch:
            return [content]
        items = [line.strip() for line in content.splitlines() if line.strip()]
        if not items:
            raise ValidationError("Input file is empty.")
        return items

    if args.batch:
        raise ValidationError("--batch requires --file.")
    if text is None:
        raise ValidationError("Provide --text, --file or a positional text.")
    return [text]


def _resolve_output_paths(args: argparse.Namespace, count: int) -> List[Path]:
    ext = args.format
    if args.batch:
        out_dir = Path(args.out or "out")
        out_dir.mkdir(parents=True, exist_ok=True)
        return [out_dir / f"item_{i + 1:03d}.{ext}" for i in range(count)]

    out_path = Path(args.out or f"out.{ext}")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    return [out_path]


def _finalize_wav_header(path: Path, data_bytes: int) -> None:
    """Replace the streaming placeholder sizes once the length is known."""
    with path.open("r+b") as f:
        f.seek(4)
        f.write(struct.pack("<I", 36 + data_bytes))
        f.seek(40)
        f.write(struct.pack("<I", data_bytes))


def _write_stream(service, synth, request_id: str, out_path: Path) -> dict:
    written = 0
    samples = 0
    chunks = 0
    with out_path.open("wb") as f:
        for chunk in service.synthesize_stream(synth, request_id):
            f.write(chunk.data)
            f.flush()
            written += len(chunk.data)
            samples += chunk.samples
            chunks += 1
    if synth.fmt == "wav" and written >= 44:
        _finalize_wav_header(out_path, written - 44)
    sr = service.engine.sample_rate
    return {"out": str(out_path), "bytes": written, "chunks": chunks, "sample_rate": sr,
            "seconds": round(samples / float(sr), 3)}


def _print(payload: dict, as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, ensure_ascii=False))
    else:
        print(payload)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code (0 ok, 2 invalid input or configuration, 1 other failure).
    """
    args = _parse_args(argv)

    configure_logging()
    log = get_logger("kokoro-ms.cli")
    rid = str(uuid4())[:12]
    set_request_id(rid)

    try:
        settings = load_settings(args.settings)

        from kokoro_ms.services.tts_service import TTSService
        service = TTSService(settings)

        if args.voices:
            voices = service.list_voices()
            if args.json:
                _print({"ok": True, "voices": voices, "default": settings.default_voice}, True)
            else:
                for v in voices:
                    print(f"{v['name']}\t{v['language']}")
            return EXIT_OK

        if len(service.registry) == 0:
            print(f"error: no voices loaded from {settings.voices_path}", file=sys.stderr)
            return EXIT_FAILURE

        texts = _load_texts(args)
        requests = [
            service.build_request(t, voice=args.voice, speed=args.speed, fmt=args.format,
                                  stream=args.stream, language=args.language)
            for t in texts
        ]

        if args.dry_run:
            items = [service.analyze(r) for r in requests]
            info(log, "dry_run", items=len(items), voice=requests[0].voice)
            _print({"ok": True, "dry_run": True, "items": items}, args.json)
            print("DRY_RUN_OK")
            return EXIT_OK

        out_paths = _resolve_output_paths(args, len(requests))
        results = []
        for i, (synth, out_path) in enumerate(zip(requests, out_paths)):
            item_id = rid if len(requests) == 1 else f"{rid}-{i + 1}"
            info(log, "synth_start", chars=len(synth.text), out=str(out_path), stream=synth.stream)
            if synth.stream:
                results.append(_write_stream(service, synth, item_id, out_path))
                continue
            res = service.synthesize(synth, item_id)
            out_path.write_bytes(res.audio)
            results.append({
                "out": str(out_path),
                "bytes": len(res.audio),
                "chunks": res.chunks,
                "sample_rate": res.sample_rate,
                "seconds": round(res.duration, 3),
            })

        _print({"ok": True, "dry_run": False, "items": results}, args.json)
        print("CLI_OK")
        return EXIT_OK

    except (ValidationError, ConfigValidationError) as e:
        message = e.message if isinstance(e, TTSError) else str(e)
        code = e.code if isinstance(e, TTSError) else "CONFIG_INVALID"
        _fail(args.json, code, message)
        return EXIT_INVALID
    except TTSError as e:
        _fail(args.json, e.code, e.message)
        return EXIT_FAILURE
    except OSError as e:
        _fail(args.json, "IO_ERROR", str(e))
        return EXIT_FAILURE


def _fail(as_json: bool, code: str, message: str) -> None:
    if as_json:
        print(json.dumps({"ok": False, "error": code, "message": message}, ensure_ascii=False))
    else:
        print(f"error: [{code}] {message}", file=sys.stderr)


if __name__ == "__main__":
    raise SystemExit(main())
