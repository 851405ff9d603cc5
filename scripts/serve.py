from __future__ import annotations

import argparse

import uvicorn

from beamshare.core.config import get_settings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Beamshare API or background worker")
    parser.add_argument("--role", choices=("api", "worker"), default="api")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    if args.role == "worker":
        from beamshare.worker.app import create_worker_app

        app = create_worker_app()
        host = args.host or settings.worker_host
        port = args.port or settings.worker_port
    else:
        from beamshare.api.app import create_app

        app = create_app()
        host = args.host or settings.api_host
        port = args.port or settings.api_port

    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
