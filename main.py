import logging

from reply_desk.config import get_settings
from reply_desk.web import app


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    print(f"Dashboard started on http://{settings.host}:{settings.port}. Press Ctrl+C to stop.")
    app.run(host=settings.host, port=settings.port, debug=False)


if __name__ == "__main__":
    main()
