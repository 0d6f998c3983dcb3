"""Command line entry point: publish one Markdown file as a draft, or serve the HTTP API."""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from notedraft import __version__
from notedraft.config import get_settings
from notedraft.publisher.engine import PublishRequest
from notedraft.publisher.errors import PublishError
from notedraft.publisher.markdown import extract_title, markdown_to_editor_text, remove_leading_h1
from notedraft.service import DEVELOPMENT_MODE, Services
from notedraft.utils.helpers import configure_logging, parse_bool


@dataclass(slots=True)
class ArticlePayload:
    title: str
    body: str


def build_payload(md_path: Path, title_override: str | None = None) -> ArticlePayload:
    """Title from the first H1 (or file name).

    The body keeps its Markdown, title line included; both renderings drop a
    leading H1 themselves.
    """
    markdown_text = md_path.read_text(encoding="utf-8")
    title = title_override or extract_title(markdown_text, md_path.stem)
    body = markdown_text.strip()
    if not remove_leading_h1(body).strip():
        raise ValueError(f"No publishable content found in: {md_path}")
    return ArticlePayload(title=title, body=body)


def preview_payload(payload: ArticlePayload) -> None:
    """Print the text that would be typed into the editor."""
    text = markdown_to_editor_text(payload.body)
    body_preview = text[:500]
    print(f"Title: {payload.title}")
    print(f"Body length: {len(text)} chars")
    print("Body preview:")
    print("-" * 40)
    print(body_preview)
    if len(text) > len(body_preview):
        print("...")
    print("-" * 40)


async def run_job(services: Services, request: PublishRequest, via: str, image_url: str | None = None) -> str:
    job = services.create_job(request)
    notifier = services.notifier_for(job)
    if via == "api":
        work = services.run_api_job(job, request, notifier, image_url=image_url)
    else:
        work = services.run_browser_job(job, request, notifier)
    task = asyncio.ensure_future(work)
    async for line in notifier.stream():
        if line.strip():
            print(line, end="", flush=True)
    return await task


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="notedraft", description="Save Markdown articles as note.com drafts.")
    parser.add_argument("--version", action="version", version=f"notedraft {__version__}")
    parser.add_argument("--log-dir", default="", help="Directory for trace logs and failure screenshots")
    parser.add_argument("--trace-log-file", default="", help="Optional path for detailed loguru trace log file")
    subcommands = parser.add_subparsers(dest="command", required=True)

    publish = subcommands.add_parser("publish", help="Save one Markdown file as a draft")
    publish.add_argument("--md-path", required=True, help="Path to source Markdown file")
    publish.add_argument("--title", default="", help="Override the title taken from the first H1")
    publish.add_argument(
        "--via",
        choices=("browser", "api"),
        default="browser",
        help="Drive the web editor (default) or call the draft API with the cached session",
    )
    publish.add_argument("--image-url", default="", help="Header image URL (api mode only)")
    publish.add_argument("--email", default="", help="Login email (default: NOTE_EMAIL)")
    publish.add_argument("--password", default="", help="Login password (default: NOTE_PASSWORD)")
    publish.add_argument("--request-id", default="", help="Caller-supplied correlation id")
    publish.add_argument(
        "--visual-debug",
        type=parse_bool,
        nargs="?",
        const=True,
        default=False,
        help="Headful browser with slowed actions (default: false)",
    )
    publish.add_argument(
        "--dry-run",
        type=parse_bool,
        nargs="?",
        const=True,
        default=False,
        help="Only parse markdown and print preview (default: false)",
    )

    serve = subcommands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def _publish(parser: argparse.ArgumentParser, args: argparse.Namespace, services: Services) -> int:
    md_path = Path(args.md_path).expanduser().resolve()
    if not md_path.exists() or not md_path.is_file():
        parser.error(f"Markdown file does not exist: {md_path}")

    payload = build_payload(md_path, args.title or None)
    logger.info("Payload ready. title='{}' body_chars={}", payload.title, len(payload.body))
    if args.dry_run:
        preview_payload(payload)
        return 0

    request = PublishRequest(
        title=payload.title,
        body=payload.body,
        mode=DEVELOPMENT_MODE,
        email=args.email or None,
        password=args.password or None,
        visual_debug=args.visual_debug,
        request_id=args.request_id or None,
        article_id=md_path.stem,
    )
    try:
        note_url = asyncio.run(run_job(services, request, args.via, image_url=args.image_url or None))
    except PublishError as exc:
        print(f"Draft failed ({exc.code}): {exc}", file=sys.stderr)
        return 1
    print(f"Draft saved: {note_url}")
    return 0


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("notedraft.server.app:app", host=args.host, port=args.port)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    log_dir = Path(args.log_dir).expanduser().resolve() if args.log_dir else settings.log_dir
    trace_log = configure_logging(log_dir, settings.log_level, args.trace_log_file or None)
    logger.info("Trace log file: {}", trace_log)

    if args.command == "serve":
        return _serve(args)
    return _publish(parser, args, Services.from_settings(settings))


if __name__ == "__main__":
    raise SystemExit(main())
