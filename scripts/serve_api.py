from __future__ import annotations

import uvicorn

from refundwatch.apps.api.main import create_app
from refundwatch.core.config import get_settings


def main() -> None:
    # Run the admin API with env-driven settings for local operation and compose.
    settings = get_settings()
    uvicorn.run(create_app(), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
