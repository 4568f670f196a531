"""
On-Chain Balance Client

Reads our spendable USDC straight from the Polygon token contract.
"""

from typing import Optional

from loguru import logger
from web3 import AsyncWeb3, Web3
from web3.middleware import ExtraDataToPOAMiddleware

from .config import ContractAddresses, Settings, get_settings


# Minimal ABI for reading an ERC20 balance
ERC20_BALANCE_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    }
]


class OnChainClient:
    """
    USDC balance reader over Polygon RPC
    """

    def __init__(self, settings: Optional[Settings] = None, w3: Optional[AsyncWeb3] = None):
        self.settings = settings or get_settings()
        self.w3 = w3

    def _connect(self) -> AsyncWeb3:
        if self.w3 is None:
            self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
                self.settings.polygon_rpc_url, request_kwargs={"timeout": 10}
            ))
            # Polygon blocks carry extra data
            self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return self.w3

    async def get_usdc_balance(self, address: str) -> float:
        """
        Get USDC balance for a wallet

        Args:
            address: Wallet address

        Returns:
            Balance in USDC
        """
        w3 = self._connect()
        contract = w3.eth.contract(
            address=Web3.to_checksum_address(ContractAddresses.USDC),
            abi=ERC20_BALANCE_ABI
        )
        raw = await contract.functions.balanceOf(Web3.to_checksum_address(address)).call()
        balance = raw / 10 ** ContractAddresses.USDC_DECIMALS
        logger.debug(f"USDC balance of {address[:10]}...: ${balance:.2f}")
        return balance
