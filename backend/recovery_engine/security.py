
from __future__ import annotations
import json
import logging
import os
from typing import Dict, List, Optional, Set

from fastapi import Header, HTTPException

from . import config

log = logging.getLogger(__name__)

ALL_SCOPES = {"plan", "simulate", "admin"}


class AuthError(HTTPException):
    def __init__(self, msg: str, code: int = 401):
        super().__init__(status_code=code, detail=msg, headers={"WWW-Authenticate": "ApiKey"})


def parse_scoped_keys(raw: str) -> Dict[str, Set[str]]:
    """Accepts JSON ``{"key": ["plan"]}`` or ``"k1:plan,simulate; k2:admin"``."""
    raw = (raw or "").strip()
    if not raw:
        return {}
    if raw.startswith("{"):
        try:
            return {k: set(v) for k, v in json.loads(raw).items()}
        except ValueError:
            log.warning("SCOPED_KEYS is not valid JSON; ignoring it")
            return {}
    out: Dict[str, Set[str]] = {}
    for part in [p.strip() for p in raw.split(";") if p.strip()]:
        if ":" not in part:
            log.warning("SCOPED_KEYS entry without scopes ignored")
            continue
        k, scopes = part.split(":", 1)
        out[k.strip()] = {s.strip() for s in scopes.split(",") if s.strip()}
    return out


def _principal(sub: str, scopes, mode: str):
    return {"sub": sub, "scopes": set(scopes), "mode": mode}


def _verify_key(x_api_key: Optional[str]):
    if config.DEMO_MODE:
        return _principal("demo", ALL_SCOPES, "demo")
    if not config.API_KEY:
        # no key configured: local/dev use, everything open
        return _principal("anonymous", ALL_SCOPES, "open")
    if x_api_key and x_api_key == config.API_KEY:
        return _principal("apikey", ALL_SCOPES, "api_key")
    scoped = parse_scoped_keys(os.getenv("SCOPED_KEYS", ""))
    if x_api_key and x_api_key in scoped:
        return _principal("scopedkey", scoped[x_api_key], "scoped_key")
    return None


def require_scopes(required: List[str]):
    """
    Usage: Depends(require_scopes(["plan"])).
      - DEMO_MODE or no API_KEY configured: allow all.
      - X-API-Key == API_KEY: all scopes.
      - X-API-Key in SCOPED_KEYS: only the listed scopes.
    """
    def _dep(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")):
        p = _verify_key(x_api_key)
        if not p:
            raise AuthError("Provide a valid X-API-Key header")
        if not set(required).issubset(p["scopes"]):
            raise AuthError(f"Insufficient scope. Need: {required}", 403)
        return p
    return _dep
