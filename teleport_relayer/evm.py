"""
EVM clients: lock-event reads on source chains and mints on the destination.
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound
from web3.types import TxReceipt

from .config import SourceChainConfig

logger = structlog.get_logger()


def lock_contract_abi(event_name: str = "EthLocked") -> list[dict[str, Any]]:
    """ABI of the lock event: (address indexed user, uint256 amount, uint256 originChainId)."""
    return [
        {
            "anonymous": False,
            "inputs": [
                {"indexed": True, "name": "user", "type": "address"},
                {"indexed": False, "name": "amount", "type": "uint256"},
                {"indexed": False, "name": "originChainId", "type": "uint256"},
            ],
            "name": event_name,
            "type": "event",
        },
    ]


# RelayerMintableToken ABI (minimal)
MINTABLE_TOKEN_ABI = [
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "mint",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
]


@dataclass
class MintResult:
    """Result of submitting a mint."""

    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    gas_used: Optional[int] = None
    # Broadcast but inclusion unknown; the tx hash must be checked before resubmitting
    pending: bool = False


class SourceChainClient:
    """Async read-only client for one source chain's lock contract."""

    def __init__(self, chain: SourceChainConfig, event_name: str = "EthLocked"):
        self.chain = chain
        self.event_name = event_name
        self.w3 = AsyncWeb3(AsyncHTTPProvider(chain.rpc_url))
        self.lock_contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(chain.lock_contract),
            abi=lock_contract_abi(event_name),
        )

    async def get_block_number(self) -> int:
        """Get the current head block height."""
        return await self.w3.eth.block_number

    async def get_lock_logs(self, from_block: int, to_block: int) -> list[Any]:
        """Fetch decoded lock events in the inclusive block range."""
        event = getattr(self.lock_contract.events, self.event_name)
        logs = await event.get_logs(from_block=from_block, to_block=to_block)
        return list(logs)


class DestinationClient:
    """Async client for the mintable token on the destination chain."""

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        token_address: str,
        gas_limit: int = 200_000,
    ):
        self.w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.account = Account.from_key(private_key)
        self.token = self.w3.eth.contract(
            address=Web3.to_checksum_address(token_address),
            abi=MINTABLE_TOKEN_ABI,
        )
        self.gas_limit = gas_limit

        logger.info(
            "destination_client_initialized",
            rpc_url=rpc_url,
            token=token_address,
            sender=self.account.address,
        )

    @property
    def address(self) -> str:
        return self.account.address

    async def decimals(self) -> int:
        """Read the token's decimals()."""
        return await self.token.functions.decimals().call()

    async def send_mint(self, to: str, amount: int) -> str:
        """
        Build, sign and broadcast mint(to, amount).

        Returns the 0x-prefixed transaction hash. Callers must serialize
        calls per signer: the nonce is taken from the pending count.
        """
        nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
        gas_price = await self.w3.eth.gas_price

        tx = await self.token.functions.mint(
            Web3.to_checksum_address(to), amount
        ).build_transaction(
            {
                "from": self.account.address,
                "nonce": nonce,
                "gasPrice": gas_price,
                "gas": self.gas_limit,
            }
        )

        signed_tx = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        """Wait for inclusion; raises web3.exceptions.TimeExhausted on timeout."""
        return await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)

    async def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        """Get a receipt, or None if the transaction is not included (yet)."""
        try:
            return await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
