"""Process entrypoint that serves the pairing API."""

import uvicorn

from pairlink.api.app import create_app
from pairlink.config import Settings
from pairlink.containers import build_container


def main() -> None:
    """Serve the API on the configured host and port."""
    settings = Settings()
    app = create_app(build_container(settings))
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
