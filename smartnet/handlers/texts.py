"""Тексты ответов бота."""

WELCOME = (
    "Привет, {name}!\n"
    "SmartNet — пакет членства за {price} USDT: 300 IEPR частями раз в месяц "
    "и награды за приглашённых друзей."
)
REFERRER_LINKED = "Вы пришли по приглашению — реферер закреплён за вашим аккаунтом."
LINK = "Ваша реферальная ссылка:\n{link}\n\nСсылка на бота:\n{bot_link}"
STATS = (
    "Приглашено напрямую: {l1}\n"
    "Второй уровень: {l2}\n"
    "Баланс наград: {balance} USDT\n"
    "Заработано всего: {earned} USDT\n"
    "Статус лидера: {leader}"
)
CLAIM_STATUS = (
    "Пакет: {package}\n"
    "Выдано токенов: {claimed} из {total}\n"
    "Доступно сейчас: {base}\n"
    "Следующий клейм: {next_at}"
)
NO_ACCOUNT = "Аккаунт не найден. Нажмите /start."
THROTTLED = "Слишком часто. Попробуйте через секунду."
ERROR_GENERIC = "Что-то пошло не так. Попробуйте позже."

__all__ = [
    "CLAIM_STATUS",
    "ERROR_GENERIC",
    "LINK",
    "NO_ACCOUNT",
    "REFERRER_LINKED",
    "STATS",
    "THROTTLED",
    "WELCOME",
]
