"""Entrypoint: run the grounded RAG server."""

import uvicorn

from grounded_rag.api.app import create_app
from grounded_rag.config.settings import Settings


def main() -> None:
    settings = Settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
