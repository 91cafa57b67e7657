import argparse
import logging
import os
import sys

from shelfmark import create_app

app = create_app()


def _quiet_dev_server() -> None:
    logging.getLogger("werkzeug").disabled = True
    sys.modules["flask.cli"].show_server_banner = lambda *args: None


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="shelfmark", description="Run the Shelfmark API")
    parser.add_argument("--host", default=os.environ.get("SHELFMARK_HOST", "127.0.0.1"))
    parser.add_argument(
        "--port", type=int, default=int(os.environ.get("SHELFMARK_PORT", "8073"))
    )
    parser.add_argument(
        "--debug", action="store_true", help="enable the reloader and the access log"
    )
    args = parser.parse_args(argv)

    if not args.debug:
        _quiet_dev_server()
    app.logger.info("Shelfmark listening on http://%s:%s", args.host, args.port)
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    main()
