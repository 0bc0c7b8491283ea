"""CLI entry point for the AI Rewriter service."""
import argparse
import os

import uvicorn

from rewriter.config import CONFIG_ENV_VAR, load_config
from rewriter.log_config import configure_logging


def main():
    """Launch the AI Rewriter server."""
    parser = argparse.ArgumentParser(prog="rewriter", description="Run the AI rewrite chat relay.")
    parser.add_argument("--config", help="Path to app.yaml (defaults to config/app.yaml)")
    args = parser.parse_args()
    if args.config:
        # the app factory re-reads config in reload workers
        os.environ[CONFIG_ENV_VAR] = args.config

    cfg = load_config(args.config)
    configure_logging(cfg.app.log_level, json_logs=cfg.app.log_json)

    uvicorn.run(
        "rewriter.app:create_app",
        factory=True,
        host=cfg.app.host,
        port=cfg.app.port,
        reload=cfg.app.env == "development",
        log_level=cfg.app.log_level.lower(),
        timeout_keep_alive=30,
    )


if __name__ == "__main__":
    main()
