from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from ..deps import get_stager
from ..errors import SecurityError
from ..staging import LocalStager

router = APIRouter()

@router.get("/{token}")
def fetch_staged(token: str, stager: LocalStager = Depends(get_stager)):
    # Public: the conversion service fetches its input here without credentials.
    try:
        path = stager.open_path(token)
    except SecurityError:
        raise HTTPException(403, "invalid staging token")
    except FileNotFoundError:
        raise HTTPException(404, "staged file not found")
    return FileResponse(path, media_type="application/octet-stream")
