# core/trade_executor.py
import logging
import secrets
from typing import Any, Optional

from eth_abi import encode
from eth_account import Account
from web3 import Web3

from data_models import SwapQuote

# execute(address target, bytes data) on the delegated smart account
EXECUTE_SELECTOR = Web3.keccak(text="execute(address,bytes)")[:4]
DEFAULT_GAS_LIMIT = 300000


def encode_execute_call(target: str, call_data: str) -> bytes:
    payload = Web3.to_bytes(hexstr=call_data) if call_data not in ("", "0x") else b""
    return EXECUTE_SELECTOR + encode(['address', 'bytes'], [Web3.to_checksum_address(target), payload])


class SmartAccountSubmitter:
    """
    Builds, signs and broadcasts a transaction that makes the smart account
    call `quote.to` with `quote.data`.

    The nonce is read fresh (pending) for every submission. In dry-run mode
    nothing is signed or sent and a random hash is returned.
    """

    def __init__(self, private_key: str, smart_account: str, dry_run: bool = True,
                 gas_limit: int = DEFAULT_GAS_LIMIT):
        self.logger = logging.getLogger(__name__)
        self.account = Account.from_key(private_key)
        self.smart_account = Web3.to_checksum_address(smart_account)
        self.dry_run = dry_run
        self.gas_limit = gas_limit

    @property
    def address(self) -> str:
        return self.account.address

    async def submit(self, connection: Any, quote: SwapQuote, chain_id: Optional[int] = None) -> str:
        calldata = encode_execute_call(quote.to, quote.data)

        if self.dry_run:
            tx_hash = "0x" + secrets.token_hex(32)
            self.logger.info(f"DRY RUN: Would call {quote.to} through smart account {self.smart_account}")
            return tx_hash

        if chain_id is None:
            chain_id = int(await connection.eth.chain_id)
        nonce = await connection.eth.get_transaction_count(self.account.address, 'pending')
        gas_price = await connection.eth.gas_price

        tx = {
            'nonce': nonce,
            'to': self.smart_account,
            'value': 0,
            'gas': self.gas_limit,
            'gasPrice': gas_price,
            'data': calldata,
            'chainId': chain_id,
        }
        signed = self.account.sign_transaction(tx)
        self.logger.info(f"PLACING: smart account call to {quote.to} on chain {chain_id} (nonce {nonce})")
        tx_hash = await connection.eth.send_raw_transaction(signed.raw_transaction)
        tx_hash = Web3.to_hex(tx_hash)
        self.logger.success(f"SENT: {tx_hash} on chain {chain_id}")
        return tx_hash
