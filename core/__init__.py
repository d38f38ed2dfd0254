"""
Core Trading Engine Module
===========================

Contains the decision logic and state of the engine:
- signals: Spread / VOI / OIR / MPB derivation
- TradingLedger: Cash, positions, executions and risk exits
- RiskManager: Pre-trade capital and position checks
- ImbalanceEngine: Entry rule and per-snapshot orchestration
- TradingLoop: Async evaluation loop over a snapshot feed
"""

from core.signals import BookSignals, SignalCalculator
from core.ledger import LedgerConfig, Position, TradingLedger
from core.risk_manager import RiskConfig, RiskManager
from core.imbalance_engine import ImbalanceEngine, StrategyConfig, TickResult
from core.trading_loop import TradingLoop

__all__ = [
    "BookSignals",
    "SignalCalculator",
    "LedgerConfig",
    "Position",
    "TradingLedger",
    "RiskConfig",
    "RiskManager",
    "ImbalanceEngine",
    "StrategyConfig",
    "TickResult",
    "TradingLoop",
]
