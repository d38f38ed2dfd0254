"""
Risk Manager Module
====================

Pre-trade checks applied to buy decisions before they reach the ledger.
Risk exits (take-profit / stop-loss) live on the ledger itself.
"""

import logging
from dataclasses import dataclass

from core.ledger import TradingLedger


logger = logging.getLogger(__name__)


@dataclass
class RiskConfig:
    """Configuration for pre-trade risk checks."""
    # Off by default: the ledger lets cash go negative on repeated buys
    allow_negative_cash: bool = True
    max_open_positions: int = 0  # 0 = unlimited


@dataclass
class RiskState:
    """Current risk state."""
    buys_checked: int = 0
    buys_rejected: int = 0
    insufficient_cash_rejections: int = 0
    position_limit_rejections: int = 0


class RiskManager:
    """
    Risk management system.

    Validates buys against available cash and the open position limit.
    """

    def __init__(self, config: RiskConfig):
        self.config = config
        self.state = RiskState()

        logger.info(
            f"RiskManager initialized | "
            f"allow_negative_cash={config.allow_negative_cash} | "
            f"max_open_positions={config.max_open_positions or 'unlimited'}"
        )

    def check_buy(self, ledger: TradingLedger, price: float, size: float, fee_rate: float) -> bool:
        """
        Check if a buy passes all risk checks.

        Returns True if the buy is allowed, False otherwise.
        """
        self.state.buys_checked += 1

        if self.config.max_open_positions and ledger.open_position_count >= self.config.max_open_positions:
            self.state.buys_rejected += 1
            self.state.position_limit_rejections += 1
            logger.warning(
                f"Buy rejected: open position limit reached | "
                f"open={ledger.open_position_count} >= {self.config.max_open_positions}"
            )
            return False

        if not self.config.allow_negative_cash:
            required = price * size * (1 + fee_rate)
            if required > ledger.cash:
                self.state.buys_rejected += 1
                self.state.insufficient_cash_rejections += 1
                logger.warning(
                    f"Buy rejected: insufficient cash | "
                    f"required={required:.6f} > cash={ledger.cash:.6f}"
                )
                return False

        return True

    def get_summary(self) -> dict:
        """Get a summary of current risk state."""
        return {
            "allow_negative_cash": self.config.allow_negative_cash,
            "max_open_positions": self.config.max_open_positions,
            "buys_checked": self.state.buys_checked,
            "buys_rejected": self.state.buys_rejected,
            "insufficient_cash_rejections": self.state.insufficient_cash_rejections,
            "position_limit_rejections": self.state.position_limit_rejections,
        }
