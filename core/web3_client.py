# web3_client.py
"""
ChainReader / ChainWriter over web3.py for UniswapV2-style pairs and routers
(Trader Joe, Pangolin, SushiSwap on Avalanche C-Chain).

Token arguments are symbols from the engine config; the client maps them to
addresses and decimals. A native token is routed through its wrapped address
and swapped with the router's ETH/AVAX entry points.
"""

import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import Timeout as RequestsTimeout
from web3 import Web3
from web3.exceptions import Web3Exception

from config.settings import EngineConfig, TokenConfig, VenueConfig
from core.chain import ChainReader, ChainWriter
from core.utils import SwapError, retry_rpc_call
from data_models import SwapRequest

PAIR_ABI = [
    {"inputs": [], "name": "getReserves",
     "outputs": [{"internalType": "uint112", "name": "_reserve0", "type": "uint112"},
                 {"internalType": "uint112", "name": "_reserve1", "type": "uint112"},
                 {"internalType": "uint32", "name": "_blockTimestampLast", "type": "uint32"}],
     "stateMutability": "view", "type": "function"},
]

ERC20_ABI = [
    {"inputs": [{"internalType": "address", "name": "account", "type": "address"}],
     "name": "balanceOf", "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
     "stateMutability": "view", "type": "function"},
    {"inputs": [{"internalType": "address", "name": "owner", "type": "address"},
                {"internalType": "address", "name": "spender", "type": "address"}],
     "name": "allowance", "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
     "stateMutability": "view", "type": "function"},
    {"inputs": [{"internalType": "address", "name": "spender", "type": "address"},
                {"internalType": "uint256", "name": "amount", "type": "uint256"}],
     "name": "approve", "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
     "stateMutability": "nonpayable", "type": "function"},
]


def _swap_entry(name: str, payable: bool) -> Dict[str, Any]:
    inputs = [] if payable else [{"internalType": "uint256", "name": "amountIn", "type": "uint256"}]
    inputs += [
        {"internalType": "uint256", "name": "amountOutMin", "type": "uint256"},
        {"internalType": "address[]", "name": "path", "type": "address[]"},
        {"internalType": "address", "name": "to", "type": "address"},
        {"internalType": "uint256", "name": "deadline", "type": "uint256"},
    ]
    return {
        "inputs": inputs,
        "name": name,
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
        "stateMutability": "payable" if payable else "nonpayable",
        "type": "function",
    }


ROUTER_ABI = [
    {"inputs": [{"internalType": "uint256", "name": "amountIn", "type": "uint256"},
                {"internalType": "address[]", "name": "path", "type": "address[]"}],
     "name": "getAmountsOut",
     "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
     "stateMutability": "view", "type": "function"},
    _swap_entry("swapExactETHForTokens", payable=True),
    _swap_entry("swapExactAVAXForTokens", payable=True),
    _swap_entry("swapExactTokensForETH", payable=False),
    _swap_entry("swapExactTokensForAVAX", payable=False),
    _swap_entry("swapExactTokensForTokens", payable=False),
]

_RPC_ERRORS = (Web3Exception, ValueError, RequestsConnectionError, RequestsTimeout)

DEADLINE_SECONDS = 20 * 60
GAS_BUFFER_PERCENT = 10


def to_base_units(amount: float, decimals: int) -> int:
    return int(Decimal(str(amount)) * (Decimal(10) ** decimals))


def from_base_units(raw: int, decimals: int) -> float:
    return float(Decimal(int(raw)) / (Decimal(10) ** decimals))


class Web3ChainClient(ChainReader, ChainWriter):
    def __init__(
        self,
        config: EngineConfig,
        private_key: Optional[str] = None,
        w3: Optional[Web3] = None,
        receipt_timeout: float = 120.0,
    ):
        self.logger = logging.getLogger(__name__)
        if w3 is None:
            if not config.rpc_url:
                raise ValueError("Web3ChainClient needs chain.rpc_url (MAINNET_RPC_PROVIDER) when no provider is injected")
            w3 = Web3(Web3.HTTPProvider(config.rpc_url, request_kwargs={"timeout": 25}))
        self.w3 = w3
        self.receipt_timeout = receipt_timeout
        self.config = config
        self.held_token = config.held_token
        self.traded_token = config.traded_token
        self.tokens: Dict[str, TokenConfig] = {
            t.symbol: t for t in (config.held_token, config.traded_token) if t is not None
        }
        self.account = self.w3.eth.account.from_key(private_key) if private_key else None

    # ---------- Lookups ----------

    def _venue(self, name: str) -> VenueConfig:
        try:
            return self.config.venue(name)
        except KeyError:
            raise SwapError(f"unknown venue '{name}'", venue=name)

    def _token(self, symbol: str) -> TokenConfig:
        try:
            return self.tokens[symbol]
        except KeyError:
            raise SwapError(f"unknown token '{symbol}'")

    def _router(self, venue: VenueConfig):
        return self.w3.eth.contract(address=Web3.to_checksum_address(venue.router_address), abi=ROUTER_ABI)

    def _erc20(self, token: TokenConfig):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token.address), abi=ERC20_ABI)

    def _path(self, token_in: TokenConfig, token_out: TokenConfig) -> List[str]:
        return [Web3.to_checksum_address(token_in.address), Web3.to_checksum_address(token_out.address)]

    # ---------- ChainReader ----------

    def get_reserves(self, venue: str, pair: str) -> Tuple[float, float]:
        cfg = self._venue(venue)
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(pair), abi=PAIR_ABI)
        reserve0, reserve1, _ = contract.functions.getReserves().call()

        # the traded token sits in slot base_reserve_index, the held token in the other
        decimals = [18, 18]
        if self.traded_token is not None:
            decimals[cfg.base_reserve_index] = self.traded_token.decimals
        if self.held_token is not None:
            decimals[1 - cfg.base_reserve_index] = self.held_token.decimals
        return from_base_units(reserve0, decimals[0]), from_base_units(reserve1, decimals[1])

    @retry_rpc_call
    def get_block_number(self) -> int:
        return int(self.w3.eth.block_number)

    @retry_rpc_call
    def get_balance(self, account: str, token: Optional[str] = None) -> float:
        address = Web3.to_checksum_address(account)
        if token is None:
            return float(Web3.from_wei(self.w3.eth.get_balance(address), "ether"))
        cfg = self._token(token)
        raw = self._erc20(cfg).functions.balanceOf(address).call()
        return from_base_units(raw, cfg.decimals)

    # ---------- ChainWriter ----------

    def quote_swap(self, venue: str, token_in: str, token_out: str, amount_in: float) -> Sequence[float]:
        cfg = self._venue(venue)
        tin, tout = self._token(token_in), self._token(token_out)
        try:
            raw = self._router(cfg).functions.getAmountsOut(
                to_base_units(amount_in, tin.decimals), self._path(tin, tout)
            ).call()
        except _RPC_ERRORS as e:
            raise SwapError(f"getAmountsOut failed: {e}", venue=venue) from e
        return [from_base_units(raw[0], tin.decimals)] + [from_base_units(r, tout.decimals) for r in raw[1:]]

    def execute_swap(self, request: SwapRequest) -> str:
        if self.account is None:
            raise SwapError("no signing key configured", venue=request.venue)

        cfg = self._venue(request.venue)
        tin, tout = self._token(request.token_in), self._token(request.token_out)
        router = self._router(cfg)
        sender = self.account.address
        amount_in = to_base_units(request.amount_in, tin.decimals)
        amount_out_min = to_base_units(request.amount_out_min, tout.decimals)
        path = self._path(tin, tout)
        deadline = int(time.time()) + DEADLINE_SECONDS
        native = cfg.native_flavor.upper()

        try:
            if request.is_native_in:
                fn = getattr(router.functions, f"swapExact{native}ForTokens")(amount_out_min, path, sender, deadline)
                value = amount_in
            else:
                self._ensure_allowance(tin, cfg, amount_in)
                if request.is_native_out:
                    name = f"swapExactTokensFor{native}"
                else:
                    name = "swapExactTokensForTokens"
                fn = getattr(router.functions, name)(amount_in, amount_out_min, path, sender, deadline)
                value = 0

            tx_hash = self._send(fn, value)
        except _RPC_ERRORS as e:
            raise SwapError(str(e), venue=request.venue) from e

        self.logger.info(f"Swap confirmed on {request.venue}: {tx_hash}")
        return tx_hash

    # ---------- Internals ----------

    def _ensure_allowance(self, token: TokenConfig, venue: VenueConfig, amount: int) -> None:
        erc20 = self._erc20(token)
        router = Web3.to_checksum_address(venue.router_address)
        allowance = erc20.functions.allowance(self.account.address, router).call()
        if allowance >= amount:
            return
        self.logger.info(f"Approving {token.symbol} for {venue.name} router")
        self._send(erc20.functions.approve(router, amount), 0)

    def _send(self, fn, value: int) -> str:
        """Estimate (+10%), sign, submit and wait for a successful receipt."""
        sender = self.account.address
        gas = fn.estimate_gas({"from": sender, "value": value})
        tx = fn.build_transaction({
            "from": sender,
            "value": value,
            "gas": gas + gas * GAS_BUFFER_PERCENT // 100,
            "gasPrice": self.w3.eth.gas_price,
            "nonce": self.w3.eth.get_transaction_count(sender),
            "chainId": self.w3.eth.chain_id,
        })
        signed = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        hex_hash = Web3.to_hex(tx_hash)
        if receipt["status"] != 1:
            raise SwapError(f"transaction {hex_hash} reverted")
        return hex_hash
