import argparse
import logging

from markstream import create_app


def main() -> None:
    p = argparse.ArgumentParser(prog="markstream")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8072)
    p.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    args = p.parse_args()

    app = create_app()
    level = args.log_level or app.config["LOG_LEVEL"]
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    app.logger.setLevel(level)
    # quieter request log; event streams hold their line open
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    print(f"MarkStream listening on http://{args.host}:{args.port}", flush=True)
    # each open tab holds a streaming request, so requests need their own threads
    app.run(host=args.host, port=args.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
