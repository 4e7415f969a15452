"""
Entry point for the snaplist backend.

Running this script with ``python run.py`` starts the FastAPI server
exposing the mask tracing, geometry and segment cache endpoints.  The
application defined in ``backend/snaplist/main.py`` is imported after
adjusting the Python path to include the ``backend`` directory.

``SNAPLIST_HOST`` and ``SNAPLIST_PORT`` override the bind address.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import logging
import uvicorn

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def main() -> None:
    """Run the Uvicorn server hosting the snaplist application."""
    # Ensure ``snaplist`` is importable when running from a checkout.
    backend_dir = Path(__file__).resolve().parent / "backend"
    if str(backend_dir) not in sys.path:
        sys.path.append(str(backend_dir))

    # Import inside main() to avoid modifying sys.path at module import time.
    from snaplist.main import app  # type: ignore

    host = os.getenv("SNAPLIST_HOST", "0.0.0.0")
    port = int(os.getenv("SNAPLIST_PORT", "8000"))
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
