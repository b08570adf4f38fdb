import argparse
import logging
import sys
import webbrowser
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from crit import __version__
from crit.agent_client import DEFAULT_PORT, AgentClient, AgentClientError
from crit.api import ReviewWaiter, create_api_router
from crit.config import Settings, settings
from crit.errors import SessionError
from crit.session import ReviewSession
from crit.status import Status
from crit.utils.common import get_random_port
from crit.watcher import ChangeWatcher

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", fmt: str | None = None) -> None:
    """Configure root logger."""
    fmt = fmt or "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=fmt)


def create_app(
    session: ReviewSession,
    app_settings: Optional[Settings] = None,
    status: Optional[Status] = None,
    port: Optional[int] = None,
    watch: bool = True,
) -> FastAPI:
    """Build the review server for one session.

    The change watcher runs for the lifetime of the app. On shutdown
    subscribers are told, the watcher stops and pending state is flushed.
    """
    cfg = app_settings or settings
    watcher = ChangeWatcher(session, interval=cfg.poll_interval, use_fs_events=cfg.use_fs_events)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if watch:
            watcher.start()
        try:
            yield
        finally:
            session.shutdown()
            if watch:
                watcher.stop()
            else:
                session.flush()

    app = FastAPI(title="crit", version=__version__, lifespan=lifespan)
    app.state.session = session
    app.state.watcher = watcher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(create_api_router(session, ReviewWaiter(), status=status, port=port))

    # Front end last so /api routes win.
    if cfg.static_dir is not None and cfg.static_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(cfg.static_dir), html=True), name="static")

    return app


def _parse_port(value: Optional[str]) -> int:
    if not value:
        return DEFAULT_PORT
    try:
        return int(value)
    except ValueError:
        print(f"Error: invalid port: {value}", file=sys.stderr)
        sys.exit(1)


def run_go(argv: List[str]) -> None:
    """`crit go [--wait] [port]`: tell a running server the agent is done."""
    parser = argparse.ArgumentParser(prog="crit go", description="Signal round-complete to a running crit server")
    parser.add_argument("--wait", "-w", action="store_true", help="Wait for the review to finish and print the prompt")
    parser.add_argument("port", nargs="?", help=f"Server port (default: {DEFAULT_PORT})")
    args = parser.parse_args(argv)

    client = AgentClient(_parse_port(args.port))
    try:
        client.round_complete()
        if not args.wait:
            print("Round complete — crit will reload.")
            return
        print(
            f"Round complete — open {client.display_url} to review the changes, then click Finish.",
            file=sys.stderr,
        )
        result = client.await_review()
    except AgentClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    if result.prompt:
        print(result.prompt)


def run_wait(argv: List[str]) -> None:
    """`crit wait [port]`: block until the reviewer clicks Finish."""
    parser = argparse.ArgumentParser(prog="crit wait", description="Wait for the reviewer to finish")
    parser.add_argument("port", nargs="?", help=f"Server port (default: {DEFAULT_PORT})")
    args = parser.parse_args(argv)

    client = AgentClient(_parse_port(args.port))
    print(f"Waiting for review at {client.display_url} — click Finish when done.", file=sys.stderr)
    try:
        result = client.await_review()
    except AgentClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    if result.prompt:
        print(result.prompt)


def run_server(argv: List[str]) -> None:
    parser = argparse.ArgumentParser(
        prog="crit",
        description="Review files or git changes with inline comments",
        epilog="Subcommands: `crit go [--wait] [port]`, `crit wait [port]`",
    )
    parser.add_argument("paths", nargs="*", help="Files or directories to review (default: git changes)")
    parser.add_argument("--port", "-p", type=int, help="Port to run the server on (default: random)")
    parser.add_argument("--output", "-o", type=Path, help="Directory for the review state file")
    parser.add_argument("--no-open", action="store_true", help="Don't open the browser")
    parser.add_argument("--version", "-v", action="version", version=f"crit {__version__}")
    args = parser.parse_args(argv)

    setup_logging(settings.effective_log_level)
    status = Status()

    try:
        if args.paths:
            session = ReviewSession.from_files(args.paths, output_dir=args.output, status=status)
        else:
            session = ReviewSession.from_git(Path.cwd(), output_dir=args.output, status=status)
    except (SessionError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    port = args.port or settings.port
    sock = None
    if not port:
        sock, port = get_random_port()

    app = create_app(session, settings, status=status, port=port)
    url = f"http://localhost:{port}"
    status.listening(url)
    if not args.no_open and settings.static_dir is not None:
        webbrowser.open(url)

    if sock is not None:
        uvicorn.run(app, fd=sock.fileno(), log_level=settings.effective_log_level.lower(),
                    timeout_graceful_shutdown=2)
    else:
        uvicorn.run(app, host=settings.host, port=port, log_level=settings.effective_log_level.lower(),
                    timeout_graceful_shutdown=2)


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the crit command."""
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] == "go":
        run_go(argv[1:])
    elif argv and argv[0] == "wait":
        run_wait(argv[1:])
    else:
        run_server(argv)


if __name__ == "__main__":
    main()
