"""
Read-only HTTP access to the blob table.

``GET /<digest>`` returns the raw blob. Anything else, including
``/<digest>/``, is a client error.
"""

from fastapi import FastAPI, HTTPException, status
from fastapi.responses import FileResponse

from .errors import InvalidKeyError, NotFoundError
from .storage.cas_table import CasTable


def create_app(cas: CasTable) -> FastAPI:
    """Create a FastAPI app serving blobs of ``cas``."""
    app = FastAPI(title="backup-store cas")

    @app.get("/{url_path:path}")
    def get_blob(url_path: str):
        try:
            path = cas.http_path("/" + url_path)
        except InvalidKeyError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except NotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        return FileResponse(path, media_type="application/octet-stream")

    return app
