"""WSGI entry point for Linkgate."""

import sys

from linkgate import create_app

app = create_app()

if __name__ == "__main__":
    debug = "--dev" in sys.argv or app.config.get("DEBUG", False)
    app.run(debug=debug, host=app.config["HOST"], port=app.config["PORT"])
