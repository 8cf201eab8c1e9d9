import logging
import sys
import re
from pathlib import Path
from core.config import settings

class SanitizingFormatter(logging.Formatter):
    """
    Security Formatter: Redacts broker tokens and credentials from logs.
    """
    # Patterns to catch Bearer tokens, session JWTs and login secrets
    SENSITIVE_PATTERNS = [
        (r'Bearer\s+[\w\-\.]+', 'Bearer [REDACTED]'),
        (r'"(jwtToken|refreshToken|feedToken)":\s*"[^"]+"', r'"\1": "[REDACTED]"'),
        (r'X-PrivateKey[\'"]?:\s*[\'"]?[^\s\'",}]+', 'X-PrivateKey: [REDACTED]'),
        (r'"(password|mpin|totp)":\s*"[^"]+"', r'"\1": "[REDACTED]"'),
        (r'auth-token=[^;\s]+', 'auth-token=[REDACTED]'),
    ]

    def format(self, record):
        msg = super().format(record)
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            msg = re.sub(pattern, replacement, msg)
        return msg

def setup_logger(name: str = "FundedDesk") -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.hasHandlers():
        return logger

    logger.setLevel(logging.DEBUG)

    # Use Sanitizing Formatter
    formatter = SanitizingFormatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Console
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    # File
    logs_dir = Path(settings.PERSISTENT_DATA_DIR) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(logs_dir / "fundeddesk.log")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    return logger
