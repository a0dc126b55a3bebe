"""
Units — целочисленные суммы и basis-point арифметика

Все суммы — int в минимальных единицах (wei для native, 1e-6 для USDT,
1e-18 для share токенов). Float в денежных расчётах ЗАПРЕЩЁН.

Округление:
- верхние границы стоимости (slippage cap) округляются вниз, чтобы
  не расширять допуск сверх заданного
"""

from typing import Final


# =============================================================================
# КОНСТАНТЫ
# =============================================================================

BPS_DENOMINATOR: Final[int] = 10_000

# Допуск slippage по умолчанию: 5%
DEFAULT_SLIPPAGE_TOLERANCE_BPS: Final[int] = 500

NATIVE_DECIMALS: Final[int] = 18
USDT_DECIMALS: Final[int] = 6
SHARE_DECIMALS: Final[int] = 18

ONE_NATIVE: Final[int] = 10**NATIVE_DECIMALS
ONE_USDT: Final[int] = 10**USDT_DECIMALS
ONE_SHARE: Final[int] = 10**SHARE_DECIMALS


# =============================================================================
# КОНВЕРТЕРЫ
# =============================================================================


def max_cost_with_slippage(cost_basis: int, tolerance_bps: int) -> int:
    """
    Максимально допустимая стоимость с учётом slippage.

    cost_basis * (1 + tolerance_bps / 10000), округление вниз.

    Args:
        cost_basis: Зафиксированная стоимость (>= 0)
        tolerance_bps: Допуск в basis points (>= 0)

    Returns:
        Верхняя граница стоимости

    Raises:
        ValueError: Если аргументы отрицательные
    """
    if cost_basis < 0:
        raise ValueError(f"cost_basis cannot be negative: {cost_basis}")
    if tolerance_bps < 0:
        raise ValueError(f"tolerance_bps cannot be negative: {tolerance_bps}")
    return cost_basis * (BPS_DENOMINATOR + tolerance_bps) // BPS_DENOMINATOR


def refund_after_cost(locked_amount: int, cost: int) -> int:
    """Возврат пользователю: max(locked - cost, 0)."""
    return max(locked_amount - cost, 0)


def format_units(amount: int, decimals: int) -> str:
    """Минимальные единицы → десятичная строка (для логов)."""
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10**decimals)
    if decimals == 0 or frac == 0:
        return f"{sign}{whole}"
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{frac_str}"


# =============================================================================
# ВАЛИДАЦИЯ
# =============================================================================


def validate_amount(amount: int, name: str = "amount") -> None:
    """
    Проверка, что сумма — неотрицательный int.

    Raises:
        TypeError: Если не int (bool тоже отклоняется)
        ValueError: Если отрицательная
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError(f"{name} must be int, got {type(amount).__name__}")
    if amount < 0:
        raise ValueError(f"{name} cannot be negative: {amount}")
