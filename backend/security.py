import os
import secrets
from dotenv import load_dotenv
from fastapi import HTTPException, Header

load_dotenv()

def admin_api_key() -> str:
    return os.getenv("ADMIN_API_KEY", "change-me")

def verify_admin(x_api_key: str = Header(default="")):
    """Reject requests whose X-API-Key header does not match ADMIN_API_KEY."""
    if not x_api_key or not secrets.compare_digest(x_api_key, admin_api_key()):
        raise HTTPException(status_code=401, detail="Invalid admin API key")
