"""Сравнение адресов TON."""

from __future__ import annotations

from loguru import logger
from pytoniq_core import Address


def normalize_address(value: str | None, *, ignore_case: bool = True) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text.casefold() if ignore_case else text


def canonical_address(value: str) -> str | None:
    """Raw-форма адреса (0:hex) через pytoniq-core; None, если строка не парсится."""

    try:
        return Address(value.strip()).to_str(is_user_friendly=False)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Адрес {addr} не удалось привести к raw-форме: {error}", addr=value, error=exc)
        return None


def same_address(
    a: str | None,
    b: str | None,
    *,
    canonicalize: bool = False,
    ignore_case: bool = True,
) -> bool:
    """Сравнивает адреса после trim, по умолчанию без учёта регистра.

    С canonicalize=True сначала пробует сравнить raw-формы, чтобы разные
    текстовые кодировки одного адреса совпадали. ignore_case=False нужен там, где
    сравнивается user-friendly base64 и регистр значим (адрес плательщика).
    """

    left = normalize_address(a, ignore_case=ignore_case)
    right = normalize_address(b, ignore_case=ignore_case)
    if left is None or right is None:
        return False
    if canonicalize:
        raw_a, raw_b = canonical_address(str(a)), canonical_address(str(b))
        if raw_a is not None and raw_b is not None:
            return raw_a == raw_b
    return left == right


__all__ = ["canonical_address", "normalize_address", "same_address"]
