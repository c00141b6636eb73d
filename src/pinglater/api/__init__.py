"""FastAPI REST API for PingLater.

This module provides the REST API for managing webhooks and reading their
delivery history.

Example:
    ```python
    import uvicorn
    from pinglater.api import create_app

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
    ```

Or run directly:
    ```bash
    uvicorn pinglater.api:app --reload
    ```
"""

from .app import app, create_app
from .router import router

__all__ = [
    "app",
    "create_app",
    "router",
]
