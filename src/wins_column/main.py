import logging

import uvicorn

from wins_column.config.settings import settings


def main() -> None:
    logging.basicConfig(level=settings.log_level.upper(), format=settings.log_format)
    uvicorn.run(
        "wins_column.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=False,
        timeout_keep_alive=30,
    )


if __name__ == "__main__":
    main()
