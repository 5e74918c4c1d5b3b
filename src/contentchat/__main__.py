"""Run the app with Dash's development server: ``python -m contentchat``."""

import logging
import os

from . import ContentChat


def main():
    logging.basicConfig(level=os.environ.get("CONTENTCHAT_LOG_LEVEL", "INFO"))
    app = ContentChat()
    app.run(debug=False, port=int(os.environ.get("PORT", 8050)))


if __name__ == "__main__":
    main()
