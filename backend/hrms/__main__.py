"""Run the HRMS API with uvicorn: ``python -m hrms``."""
import uvicorn

from hrms.config import get_config


def main() -> None:
    config = get_config()
    uvicorn.run(
        "hrms.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level,
    )


if __name__ == "__main__":
    main()
