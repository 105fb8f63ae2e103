from __future__ import annotations

import asyncio

import uvicorn

from ..settings import settings
from .app import create_app
from .wiring import build_components


async def _main() -> None:
    components = build_components(settings)
    app = create_app(
        components.store,
        embedder=components.embedder,
        scorer=components.scorer,
        retrieval=components.retrieval,
    )

    config = uvicorn.Config(
        app,
        host=settings.bind_host,
        port=settings.bind_port,
        log_level=(settings.log_level or "info").lower(),
        loop="uvloop",
        http="httptools",
    )
    server = uvicorn.Server(config)

    try:
        await server.serve()
    finally:
        await components.aclose()


def main() -> None:
    asyncio.run(_main())


if __name__ == "__main__":
    main()
