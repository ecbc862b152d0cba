"""Serve the API with uvicorn on ``PORT`` (default 8080)."""

import os

import uvicorn


def main() -> None:
    port = int(os.getenv("PORT", "8080"))
    uvicorn.run("sandboxexec.api.main:app", host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
