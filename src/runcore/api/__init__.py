"""
Expose the FastAPI application factory.

The service runs under Uvicorn using the factory form, which builds a
fresh application (and probes installed languages) at startup:

```sh
python -m runcore.api
```
"""

from .main import create_app

__all__ = ["create_app"]
