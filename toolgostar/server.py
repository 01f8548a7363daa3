from __future__ import annotations

from types import FrameType

import uvicorn

from toolgostar.core.config import get_settings
from toolgostar.middleware.shutdown import drain_state


class DrainingServer(uvicorn.Server):
    """Marks the app as draining as soon as the stop signal lands, while connections are still open."""

    def handle_exit(self, sig: int, frame: FrameType | None) -> None:
        drain_state.begin()
        super().handle_exit(sig, frame)


def build_server() -> DrainingServer:
    settings = get_settings()
    config = uvicorn.Config(
        "toolgostar.main:app",
        host="0.0.0.0",
        port=settings.api_port,
        log_config=None,
        timeout_graceful_shutdown=settings.shutdown_grace_seconds,
    )
    return DrainingServer(config)


def main() -> None:
    build_server().run()


if __name__ == "__main__":
    main()
