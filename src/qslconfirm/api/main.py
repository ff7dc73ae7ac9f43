"""QSL Confirm API service entry point.

This module provides the application instance for ASGI servers (uvicorn)
and a run() function for direct execution.

The app is created using the factory pattern from qslconfirm.api.create_app().
"""

import logging

from qslconfirm.api import create_app
from qslconfirm.core.settings import configure_logging, get_settings

logger = logging.getLogger(__name__)

# This is what uvicorn references: qslconfirm.api.main:app
app = create_app()


def run() -> None:
    """Run the API server using uvicorn.

    This function is called by the qslconfirm-api console script
    defined in pyproject.toml.
    """
    import uvicorn

    configure_logging()
    settings = get_settings()

    logger.info("Starting QSL Confirm API on %s:%d", settings.api_host, settings.api_port)

    uvicorn.run(
        "qslconfirm.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


if __name__ == "__main__":
    run()
