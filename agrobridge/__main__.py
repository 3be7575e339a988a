"""
Run the API with uvicorn: ``python -m agrobridge``.
"""

from __future__ import annotations

import uvicorn

from agrobridge.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("agrobridge.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
