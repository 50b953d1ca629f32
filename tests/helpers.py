"""Общие константы и построители ответов индексера для тестов."""

TREASURY = "EQTreasury0000000000000000000000000000000000000"
USDT_MASTER = "EQUsdtMaster00000000000000000000000000000000000"
IEPR_MASTER = "EQIeprMaster00000000000000000000000000000000000"
PAYER = "EQPayer000000000000000000000000000000000000000"


def jetton_tx(
    amount="30000000",
    sender=PAYER,
    recipient=TREASURY,
    jetton=USDT_MASTER,
):
    """Ответ TonAPI с одним JettonTransfer в actions."""
    return {
        "hash": "abc",
        "actions": [
            {
                "type": "JettonTransfer",
                "JettonTransfer": {
                    "sender": {"address": sender},
                    "recipient": {"address": recipient},
                    "amount": amount,
                    "jetton": {"address": jetton},
                },
            }
        ],
    }
