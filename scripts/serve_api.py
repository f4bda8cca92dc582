from __future__ import annotations

import uvicorn

from ledgerlens.apps.api.main import create_app
from ledgerlens.core.config import get_settings


def main() -> None:
    # Run the API with env-driven settings for compose and local development.
    settings = get_settings()
    uvicorn.run(create_app(), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
