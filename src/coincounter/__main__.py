"""Run the CoinCounter API with uvicorn: ``python -m coincounter``."""

from __future__ import annotations

import uvicorn

from coincounter.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("coincounter.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
