"""
stepflow Main Entry Point
FastAPI server startup for stepflow
"""

import uvicorn

from stepflow.config import load_config
from stepflow.gateway.app import create_app


def main():
    """Start stepflow server"""
    config = load_config()
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower()
    )


if __name__ == "__main__":
    main()
