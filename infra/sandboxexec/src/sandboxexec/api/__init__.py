"""
Expose the FastAPI application instance.

Importing this module creates the FastAPI application and registers
all routes.  The execution backend itself is only built when the
application starts, so importing is cheap.  Run the service with:

```sh
python -m sandboxexec.api
```
"""

from .main import app, create_app

__all__ = ["app", "create_app"]
