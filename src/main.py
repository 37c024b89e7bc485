"""Application entry point for the receipt OCR API server."""

import sys

import uvicorn

from src.api.app import create_app
from src.storage.signature_store import SignatureStore
from src.submission.errors import StorageConfigError
from src.utils.config import load_config
from src.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def main() -> None:
    """Start the FastAPI application server."""
    config = load_config()
    setup_logging(config.log_level)

    try:
        SignatureStore.from_config(config.signatures)
    except StorageConfigError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    uvicorn.run(create_app(config), host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    main()
