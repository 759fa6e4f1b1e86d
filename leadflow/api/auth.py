import secrets

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader
from leadflow import config

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str | None = Security(api_key_header)):
    if not api_key:
        raise HTTPException(status_code=401, detail="Missing API key")
    if not secrets.compare_digest(api_key, config.API_KEY):
        raise HTTPException(status_code=401, detail="Invalid API key")
    return api_key
