"""Календарная арифметика для сроков пакета и помесячных клеймов."""

from __future__ import annotations

import calendar
from datetime import datetime


def add_months(moment: datetime, months: int) -> datetime:
    """Сдвиг на N календарных месяцев; 31 января + 1 месяц = последний день февраля."""

    index = moment.month - 1 + months
    year = moment.year + index // 12
    month = index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def whole_months_between(earlier: datetime, later: datetime) -> int:
    """Разница в календарных месяцах, число месяца не учитывается."""

    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def first_day_of_next_month(moment: datetime) -> datetime:
    shifted = add_months(moment.replace(day=1), 1)
    return shifted.replace(hour=0, minute=0, second=0, microsecond=0)


__all__ = ["add_months", "first_day_of_next_month", "whole_months_between"]
