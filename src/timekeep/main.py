"""Application entry point for the Timekeep API server."""

from timekeep.app import App
from timekeep.config import Config
from timekeep.logging import setup_logging
from timekeep.web.runner import run_server


def main() -> None:
    config = Config()
    setup_logging(config.debug)
    app = App(config)
    run_server(app, config)


if __name__ == "__main__":
    main()
