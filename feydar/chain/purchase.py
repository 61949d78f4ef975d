"""
Initial purchase detection from ERC-20 Transfer logs in the deployment receipt
"""

from dataclasses import dataclass
from typing import Optional

from feydar.chain.contracts import TRANSFER_TOPIC
from feydar.models import TransactionReceipt


@dataclass
class InitialPurchase:
    tokens_received: int  # raw units of the new token sent to the deployer
    paired_spent: int     # raw units of the paired token sent by the deployer

    def describe(self, symbol: str, decimals: int = 18) -> str:
        received = format_units(self.tokens_received, decimals)
        if self.paired_spent:
            return f"{received} {symbol} for {format_units(self.paired_spent, decimals)} paired token"
        return f"{received} {symbol}"


def format_units(amount: int, decimals: int) -> str:
    """Integer token amount -> decimal string without trailing zeros"""
    whole, fraction = divmod(int(amount), 10 ** decimals)
    fraction_text = str(fraction).rjust(decimals, '0').rstrip('0') if decimals else ''
    return f"{whole:,}.{fraction_text[:4]}" if fraction_text else f"{whole:,}"


def _topic_to_address(topic: bytes) -> str:
    return '0x' + topic[-20:].hex()


def extract_initial_purchase(receipt: TransactionReceipt, token_address: str,
                             paired_token: Optional[str], deployer: str) -> Optional[InitialPurchase]:
    """Sum what the deployer bought in the deployment transaction itself"""
    token = token_address.lower()
    paired = paired_token.lower() if paired_token else None
    deployer = deployer.lower()

    received = 0
    spent = 0
    for log in receipt.logs:
        if log.topic0 != TRANSFER_TOPIC or len(log.topics) < 3:
            continue
        source = _topic_to_address(log.topics[1])
        destination = _topic_to_address(log.topics[2])
        amount = int.from_bytes(log.data[:32], 'big') if log.data else 0
        emitter = log.address.lower()

        if emitter == token and destination == deployer and source != deployer:
            received += amount
        elif paired and emitter == paired and source == deployer:
            spent += amount

    if not received:
        return None
    return InitialPurchase(tokens_received=received, paired_spent=spent)
