#!/usr/bin/env python3
"""
FundedDesk – Simple Metrics Store (No Prometheus)
Metrics stored in-memory and exposed via REST API
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional
from collections import deque

from core.market_session import utc_now

@dataclass
class SystemMetrics:
    """Live counters for the admin dashboard"""
    # Counters (Reset daily)
    trades_executed: int = 0
    trades_rejected: int = 0
    square_offs: int = 0
    auto_square_off_runs: int = 0
    auto_squared_trades: int = 0
    evaluations: int = 0
    status_changes: int = 0
    quote_fallbacks: int = 0
    broker_session_refreshes: int = 0

    # Time-series (Last N events)
    recent_errors: deque = field(default_factory=lambda: deque(maxlen=100))
    recent_trades: deque = field(default_factory=lambda: deque(maxlen=50))

    # Timestamps
    last_reset: datetime = field(default_factory=utc_now)
    last_trade: Optional[datetime] = None
    last_auto_square_off: Optional[datetime] = None

    def reset_daily_counters(self):
        """Called at market open"""
        self.trades_executed = 0
        self.trades_rejected = 0
        self.square_offs = 0
        self.auto_square_off_runs = 0
        self.auto_squared_trades = 0
        self.evaluations = 0
        self.status_changes = 0
        self.quote_fallbacks = 0
        self.broker_session_refreshes = 0
        self.last_reset = utc_now()

    def log_trade(self, success: bool, challenge_id: str, scrip: str, reason: str = None, trade_id: str = None):
        if success:
            self.trades_executed += 1
            self.last_trade = utc_now()
            self.recent_trades.append({
                "trade_id": trade_id,
                "challenge_id": challenge_id,
                "scrip": scrip,
                "timestamp": utc_now().isoformat(),
                "status": "executed"
            })
        else:
            self.trades_rejected += 1
            self.recent_errors.append({
                "type": "trade_rejected",
                "challenge_id": challenge_id,
                "scrip": scrip,
                "reason": reason,
                "timestamp": utc_now().isoformat()
            })

    def log_square_off(self, trade_id: str, pnl: float):
        self.square_offs += 1
        self.recent_trades.append({
            "trade_id": trade_id,
            "pnl": pnl,
            "timestamp": utc_now().isoformat(),
            "status": "squared_off"
        })

    def log_auto_square_off(self, closed: int):
        self.auto_square_off_runs += 1
        self.auto_squared_trades += closed
        self.last_auto_square_off = utc_now()

    def log_evaluation(self, challenge_id: str, status_changed: bool):
        self.evaluations += 1
        if status_changed:
            self.status_changes += 1

    def log_quote_fallback(self, scrip: str, source: str):
        """A live quote was unavailable and a stored/entry price was used instead."""
        self.quote_fallbacks += 1
        self.recent_errors.append({
            "type": "quote_fallback",
            "scrip": scrip,
            "source": source,
            "timestamp": utc_now().isoformat()
        })

    def log_session_refresh(self):
        self.broker_session_refreshes += 1

    def to_dict(self) -> Dict:
        """Serialize for API response"""
        return {
            "counters": {
                "trades_executed": self.trades_executed,
                "trades_rejected": self.trades_rejected,
                "square_offs": self.square_offs,
                "auto_square_off_runs": self.auto_square_off_runs,
                "auto_squared_trades": self.auto_squared_trades,
                "evaluations": self.evaluations,
                "status_changes": self.status_changes,
                "quote_fallbacks": self.quote_fallbacks,
                "broker_session_refreshes": self.broker_session_refreshes,
            },
            "timestamps": {
                "last_reset": self.last_reset.isoformat() if self.last_reset else None,
                "last_trade": self.last_trade.isoformat() if self.last_trade else None,
                "last_auto_square_off": self.last_auto_square_off.isoformat() if self.last_auto_square_off else None,
            },
            "recent_errors": list(self.recent_errors)[-10:],  # Last 10 only
            "recent_trades": list(self.recent_trades)[-10:],
        }

# Global instance
_metrics = SystemMetrics()

def get_metrics() -> SystemMetrics:
    """Get global metrics instance"""
    return _metrics
