from decimal import Decimal, ROUND_HALF_UP

from config import CURRENCY_DECIMAL_PLACES


def estimate_cost(allocation_percentage, duration_days, daily_rate, decimal_places=CURRENCY_DECIMAL_PLACES):
    """
    Оценивает стоимость распределения.

    amount = allocation_percentage / 100 * duration_days * daily_rate,
    округляется до минимальной денежной единицы, половина - от нуля
    (Decimal ROUND_HALF_UP): 0.005 -> 0.01, -0.005 -> -0.01.

    Args:
        allocation_percentage: Доля мощности ресурса в процентах
        duration_days: Длительность распределения в днях
        daily_rate: Стоимость полного дня ресурса или None, если неизвестна
        decimal_places: Количество знаков минимальной денежной единицы

    Returns:
        Сумма Decimal
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    if daily_rate is None:
        return Decimal(0).quantize(quantum)

    amount = (
        Decimal(str(allocation_percentage)) / Decimal(100)
        * Decimal(str(duration_days))
        * Decimal(str(daily_rate))
    )
    return amount.quantize(quantum, rounding=ROUND_HALF_UP)
