"""Agents — автоматическое управление портфелем horse shares."""

from .portfolio_agent import (
    AgentConfig,
    HorsePortfolioAgent,
    InvestmentResult,
    PortfolioValue,
    StrategyConfig,
)

__all__ = [
    "HorsePortfolioAgent",
    "StrategyConfig",
    "AgentConfig",
    "InvestmentResult",
    "PortfolioValue",
]
