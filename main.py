"""ASGI entrypoint for serverless hosting of the JetSchema SQL API.

The package must be installed (``pip install .``); hosts import ``app`` from
here, and ``python main.py`` serves it locally.
"""

import uvicorn

from jetschema_sql.api import app

__all__ = ["app"]


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8005, reload=True)
