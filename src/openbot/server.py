"""FastMCP server bootstrap for the OpenBot session tools."""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import OpenBotSettings, get_settings
from .storage import read_completion
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for OpenBot processes."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(settings: Optional[OpenBotSettings] = None) -> FastMCP:
    """Instantiate the FastMCP server bound to the session in ``OPENBOT_SESSION_DIR``."""

    settings = settings or get_settings()
    session_dir = settings.session_dir
    history_dir = session_dir.parent if session_dir is not None else None

    server = FastMCP(
        name="OpenBot Session Tools",
        version=__version__,
        instructions=(
            "Tools for an autonomous OpenBot session. Call session_complete when the "
            "work is done; use session_history to read what earlier sessions did."
        ),
    )

    handles = register_tools(server, history_dir=history_dir, session_dir=session_dir)

    @server.resource(
        "resource://openbot/session",
        name="openbot_session",
        title="OpenBot Session",
        description="Identity and completion state of the session these tools act on.",
        mime_type="application/json",
        tags={"status", "session"},
    )
    def session_resource(context: Context) -> str:
        """Return a JSON string describing the bound session."""

        completion = read_completion(session_dir) if session_dir is not None else None
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "session_id": session_dir.name if session_dir is not None else None,
            "session_dir": str(session_dir) if session_dir is not None else None,
            "completion": completion.model_dump(mode="json") if completion is not None else None,
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "tool_handles", handles)
    setattr(server, "session_dir", session_dir)
    return server


def main() -> None:
    """Entry point for running the session tools server over stdio."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching OpenBot session tools",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "session_dir": str(settings.session_dir) if settings.session_dir else None,
        },
    )
    server.run()


if __name__ == "__main__":
    main()
