"""Demo account credentials stored on a challenge (JSON, or legacy "username: x | password: y")."""
import json
import logging
from typing import Optional

from core.models import DemoCredentials

logger = logging.getLogger("ChallengeCredentials")

def parse_challenge_credentials(serialized: Optional[str]) -> Optional[DemoCredentials]:
    if not serialized:
        return None

    try:
        parsed = json.loads(serialized)
        if isinstance(parsed, dict) and parsed.get("username") and parsed.get("password"):
            return DemoCredentials(username=str(parsed["username"]), password=str(parsed["password"]))
    except ValueError:
        logger.debug("Stored demo credentials are not JSON; trying legacy format")

    parts = [p.strip() for p in serialized.split("|")]
    if len(parts) < 2:
        return None
    user_part, pass_part = parts[0], parts[1]
    if not (user_part.lower().startswith("username") and pass_part.lower().startswith("password")):
        return None

    user_bits = user_part.split(":")
    pass_bits = pass_part.split(":")
    username = user_bits[1].strip() if len(user_bits) > 1 else ""
    password = pass_bits[1].strip() if len(pass_bits) > 1 else ""
    if username and password:
        return DemoCredentials(username=username, password=password)
    return None

def serialize_challenge_credentials(credentials: DemoCredentials) -> str:
    return json.dumps({"username": credentials.username, "password": credentials.password})
