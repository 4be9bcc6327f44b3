"""
Payment core HTTP entry point.

Serves app.api:app (gateway callbacks, gateway list, health) with uvicorn.
"""
import os

import uvicorn

import config


def main():
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT") or config.env("PORT") or "8080")
    uvicorn.run(
        "app.api:app",
        host=host,
        port=port,
        log_config=None,  # app.core.logging_config owns the root logger
        proxy_headers=True,
    )


if __name__ == "__main__":
    main()
