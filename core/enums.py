# File: core/enums.py

from enum import Enum

class UserRole(Enum):
    TRADER = "TRADER"
    ADMIN = "ADMIN"

class ChallengeStatus(Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PASSED = "PASSED"
    FAILED = "FAILED"

class TradeType(Enum):
    BUY = "BUY"
    SELL = "SELL"

class TradeStatus(Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"

class ViolationType(Enum):
    DAILY_LOSS = "DAILY_LOSS"
    MAX_LOSS = "MAX_LOSS"
    DURATION_EXPIRED = "DURATION_EXPIRED"
    OTHER = "OTHER"

class ViolationSeverity(Enum):
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"

class Verdict(Enum):
    PASS = "PASS"
    FAIL = "FAIL"

class QuoteSource(Enum):
    LIVE = "LIVE"        # Broker LTP
    MOCKED = "MOCKED"    # Fallback quote store
    ENTRY = "ENTRY"      # Trade's own entry price
