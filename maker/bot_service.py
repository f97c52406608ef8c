"""
Bot Service - transaction wrappers over the Transaction Sequencer

One method per protocol write. Each builds exactly one contract call,
submits it through ``TxSequencer.submit`` (which supplies the nonce), then
blocks until the receipt is in. ``<Name>TxSent`` and ``<Name>TxMined``
events are logged for every call. Nothing is deduplicated here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from eth_account.signers.local import LocalAccount
from web3 import Web3

import config
from maker.abis import CLEARING_HOUSE_ABI, ERC20_ABI, VAULT_ABI
from maker.eth_service import EthService
from maker.log import log_event
from maker.perp_service import AmountType, PerpService, Side, swap_flags
from maker.tx_sequencer import TxSequencer, tx_hash_hex

logger = logging.getLogger(__name__)

MAX_UINT256 = 2**256 - 1
ZERO_BYTES32 = b"\x00" * 32


@dataclass(frozen=True)
class TxOverrides:
    gas_limit: int = config.TX_GAS_LIMIT
    max_fee_per_gas_gwei: Decimal = Decimal(str(config.TX_MAX_FEE_PER_GAS_GWEI))
    max_priority_fee_per_gas_gwei: Decimal = Decimal(str(config.TX_MAX_PRIORITY_FEE_PER_GAS_GWEI))

    def to_tx_params(self) -> dict:
        return {
            "gas": self.gas_limit,
            "maxFeePerGas": Web3.to_wei(self.max_fee_per_gas_gwei, "gwei"),
            "maxPriorityFeePerGas": Web3.to_wei(self.max_priority_fee_per_gas_gwei, "gwei"),
        }


def referral_code_bytes(code: Optional[str]) -> bytes:
    """Right-pad a short ASCII referral code into bytes32."""
    if not code:
        return ZERO_BYTES32
    raw = code.encode("utf-8")
    if len(raw) > 32:
        raise ValueError("referral code longer than 32 bytes")
    return raw.ljust(32, b"\x00")


class BotService:
    def __init__(
        self,
        eth_service: EthService,
        perp_service: PerpService,
        sequencer: TxSequencer,
        receipt_timeout: float = config.TX_RECEIPT_TIMEOUT_SEC,
    ):
        self.eth_service = eth_service
        self.perp_service = perp_service
        self.sequencer = sequencer
        self.contracts = perp_service.contracts
        self.receipt_timeout = receipt_timeout

    def _send(
        self,
        trader: LocalAccount,
        event: str,
        make_call: Callable[[], object],
        overrides: Optional[TxOverrides],
        params: dict,
    ):
        overrides = overrides or TxOverrides()

        def build_tx(nonce: int):
            w3 = self.eth_service.w3
            tx = make_call().build_transaction(
                {
                    "from": trader.address,
                    "nonce": nonce,
                    "chainId": w3.eth.chain_id,
                    **overrides.to_tx_params(),
                }
            )
            signed = trader.sign_transaction(tx)
            return w3.eth.send_raw_transaction(signed.raw_transaction)

        tx_hash = self.sequencer.submit(trader.address, build_tx)
        log_event(logger, f"{event}TxSent", trader=trader.address, **params)

        receipt = self.sequencer.wait_for_receipt(tx_hash, timeout=self.receipt_timeout)
        log_event(
            logger,
            f"{event}TxMined",
            trader=trader.address,
            txHash=tx_hash_hex(tx_hash),
            gasUsed=receipt.get("gasUsed"),
            blockNumber=receipt.get("blockNumber"),
            **params,
        )
        return receipt

    def _clearing_house(self):
        return self.eth_service.create_contract(self.contracts.clearing_house, CLEARING_HOUSE_ABI)

    # ─────────────────────────────────────────────────────────────
    # Collateral
    # ─────────────────────────────────────────────────────────────

    def approve(self, trader: LocalAccount, spender: str, amount: Decimal, overrides: Optional[TxOverrides] = None):
        decimals = self.perp_service.get_collateral_decimals()
        token = self.contracts.collateral_token
        return self._send(
            trader,
            "Approve",
            lambda: self.eth_service.create_contract(token, ERC20_ABI).functions.approve(
                spender, self.eth_service.to_wei(amount, decimals)
            ),
            overrides,
            {"token": token, "spender": spender, "amount": amount},
        )

    def deposit(self, trader: LocalAccount, amount: Decimal, overrides: Optional[TxOverrides] = None):
        decimals = self.perp_service.get_collateral_decimals()
        token = self.contracts.collateral_token
        return self._send(
            trader,
            "Deposit",
            lambda: self.eth_service.create_contract(self.contracts.vault, VAULT_ABI).functions.deposit(
                token, self.eth_service.to_wei(amount, decimals)
            ),
            overrides,
            {"token": token, "amount": amount},
        )

    # ─────────────────────────────────────────────────────────────
    # Liquidity
    # ─────────────────────────────────────────────────────────────

    def add_liquidity(
        self,
        trader: LocalAccount,
        base_token: str,
        lower_tick: int,
        upper_tick: int,
        base: Decimal,
        quote: Decimal,
        overrides: Optional[TxOverrides] = None,
    ):
        params = (
            base_token,
            self.eth_service.to_wei(base),
            self.eth_service.to_wei(quote),
            lower_tick,
            upper_tick,
            0,
            0,
            False,
            MAX_UINT256,
        )
        return self._send(
            trader,
            "AddLiquidity",
            lambda: self._clearing_house().functions.addLiquidity(params),
            overrides,
            {"baseToken": base_token, "lowerTick": lower_tick, "upperTick": upper_tick, "base": base, "quote": quote},
        )

    def remove_liquidity(
        self,
        trader: LocalAccount,
        base_token: str,
        lower_tick: int,
        upper_tick: int,
        liquidity: int,
        overrides: Optional[TxOverrides] = None,
    ):
        params = (base_token, lower_tick, upper_tick, int(liquidity), 0, 0, MAX_UINT256)
        return self._send(
            trader,
            "RemoveLiquidity",
            lambda: self._clearing_house().functions.removeLiquidity(params),
            overrides,
            {"baseToken": base_token, "lowerTick": lower_tick, "upperTick": upper_tick, "liquidity": int(liquidity)},
        )

    # ─────────────────────────────────────────────────────────────
    # Positions
    # ─────────────────────────────────────────────────────────────

    def open_position(
        self,
        trader: LocalAccount,
        base_token: str,
        side: Side,
        amount_type: AmountType,
        amount: Decimal,
        overrides: Optional[TxOverrides] = None,
        referral_code: Optional[str] = None,
    ):
        is_base_to_quote, is_exact_input = swap_flags(side, amount_type)
        params = (
            base_token,
            is_base_to_quote,
            is_exact_input,
            self.eth_service.to_wei(amount),
            0,
            MAX_UINT256,
            0,
            referral_code_bytes(referral_code),
        )
        return self._send(
            trader,
            "OpenPosition",
            lambda: self._clearing_house().functions.openPosition(params),
            overrides,
            {
                "baseToken": base_token,
                "isBaseToQuote": is_base_to_quote,
                "isExactInput": is_exact_input,
                "amount": amount,
            },
        )

    def close_position(
        self,
        trader: LocalAccount,
        base_token: str,
        overrides: Optional[TxOverrides] = None,
        referral_code: Optional[str] = None,
    ):
        """Close the whole position. No transaction when there is none."""
        if self.perp_service.get_position_size(trader.address, base_token) == 0:
            return None
        params = (base_token, 0, 0, MAX_UINT256, referral_code_bytes(referral_code))
        return self._send(
            trader,
            "ClosePosition",
            lambda: self._clearing_house().functions.closePosition(params),
            overrides,
            {"baseToken": base_token},
        )

    def cancel_all_excess_orders(self, trader: LocalAccount, maker: str, base_token: str, overrides: Optional[TxOverrides] = None):
        return self._send(
            trader,
            "CancelAllExcessOrders",
            lambda: self._clearing_house().functions.cancelAllExcessOrders(maker, base_token),
            overrides,
            {"maker": maker, "baseToken": base_token},
        )

    def liquidate(self, trader: LocalAccount, target: str, base_token: str, overrides: Optional[TxOverrides] = None):
        return self._send(
            trader,
            "Liquidate",
            lambda: self._clearing_house().functions.liquidate(target, base_token),
            overrides,
            {"target": target, "baseToken": base_token},
        )
