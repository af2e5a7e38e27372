# flasharb/flash_loan.py
"""
Flash-Loan Settlement Client
Builds, signs and tracks calls to the on-chain settlement contract, which
borrows from Aave V3, runs the swap legs and repays within one transaction.
"""

import logging
import threading
from typing import List, Optional

from eth_abi import encode
from web3 import Web3
from web3.exceptions import TransactionNotFound
from web3.logs import DISCARD

from flasharb.config import AAVE_FLASH_LOAN_FEE_BPS, AAVE_POOL_ADDRESS, CHAIN_ID
from flasharb.errors import SubmissionFailed
from flasharb.models import BPS, ExecutionPlan, ExecutionStep, SettlementReceipt

logger = logging.getLogger(__name__)

LEG_TUPLE = "(address,bytes,address,address,uint256)"

# =============================================================================
# ABIs
# =============================================================================

SETTLEMENT_ABI = [
    {
        "name": "executeArbitrage",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "asset", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {
                "name": "legs",
                "type": "tuple[]",
                "components": [
                    {"name": "target", "type": "address"},
                    {"name": "data", "type": "bytes"},
                    {"name": "tokenIn", "type": "address"},
                    {"name": "tokenOut", "type": "address"},
                    {"name": "minAmountOut", "type": "uint256"},
                ],
            },
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "name": "ArbitrageExecuted",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "asset", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
            {"name": "profit", "type": "uint256", "indexed": False},
        ],
    },
]

AAVE_POOL_ABI = [
    {
        "name": "FLASHLOAN_PREMIUM_TOTAL",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint128"}],
    },
]


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def calculate_total_repayment(amount: int, fee_bps: int) -> int:
    """Principal plus premium, premium rounded up"""
    return amount + -(-amount * fee_bps // BPS)


def leg_tuples(steps: List[ExecutionStep]) -> list:
    return [
        (
            Web3.to_checksum_address(step.target),
            step.data,
            Web3.to_checksum_address(step.token_in),
            Web3.to_checksum_address(step.token_out),
            step.min_amount_out,
        )
        for step in steps
    ]


def encode_arbitrage_params(plan: ExecutionPlan) -> bytes:
    """ABI-encoded arguments of executeArbitrage, as the contract decodes them"""
    return encode(
        ["address", "uint256", f"{LEG_TUPLE}[]", "uint256"],
        [
            Web3.to_checksum_address(plan.asset),
            plan.amount,
            leg_tuples(plan.steps),
            plan.deadline,
        ],
    )


# =============================================================================
# SETTLEMENT CLIENT
# =============================================================================

class SettlementClient:

    def __init__(
        self,
        w3: Web3,
        contract_address: str,
        account,
        aave_pool: str = AAVE_POOL_ADDRESS,
        chain_id: int = CHAIN_ID,
    ):
        self.w3 = w3
        self.account = account
        self.chain_id = chain_id
        self.contract = w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=SETTLEMENT_ABI,
        )
        self.pool = w3.eth.contract(address=Web3.to_checksum_address(aave_pool), abi=AAVE_POOL_ABI)
        self._fee_cache = None
        self._nonce_lock = threading.Lock()

    @property
    def address(self) -> str:
        """Swap legs pay out to the settlement contract"""
        return self.contract.address

    def get_flash_loan_fee_bps(self) -> int:
        if self._fee_cache is None:
            try:
                self._fee_cache = self.pool.functions.FLASHLOAN_PREMIUM_TOTAL().call()
            except Exception as e:
                logger.warning(f"Flash loan premium read failed, using {AAVE_FLASH_LOAN_FEE_BPS} bps: {e}")
                self._fee_cache = AAVE_FLASH_LOAN_FEE_BPS
        return self._fee_cache

    def build_transaction(self, plan: ExecutionPlan, gas_price: int, gas_limit: int, nonce: int) -> dict:
        return self.contract.functions.executeArbitrage(
            Web3.to_checksum_address(plan.asset),
            plan.amount,
            leg_tuples(plan.steps),
            plan.deadline,
        ).build_transaction({
            "from": self.account.address,
            "gas": gas_limit,
            "gasPrice": gas_price,
            "nonce": nonce,
            "chainId": self.chain_id,
        })

    def submit(self, plan: ExecutionPlan, gas_price: int, gas_limit: int) -> str:
        try:
            with self._nonce_lock:
                nonce = self.w3.eth.get_transaction_count(self.account.address, "pending")
                tx = self.build_transaction(plan, gas_price, gas_limit, nonce)
                signed = self.account.sign_transaction(tx)
                tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise SubmissionFailed(f"[{plan.opportunity_id}] {type(e).__name__}: {e}") from e

        tx_hash = Web3.to_hex(tx_hash)
        logger.info(f"[{plan.opportunity_id}] Settlement tx sent: {tx_hash}")
        return tx_hash

    def parse_profit(self, receipt) -> Optional[int]:
        events = self.contract.events.ArbitrageExecuted().process_receipt(receipt, errors=DISCARD)
        if not events:
            return None
        return events[0]["args"]["profit"]

    def get_receipt(self, tx_hash: str) -> Optional[SettlementReceipt]:
        """None until the transaction is included"""
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            logger.warning(f"Receipt poll for {tx_hash} failed: {e}")
            return None

        status = receipt["status"]
        return SettlementReceipt(
            tx_hash=tx_hash,
            status=status,
            gas_used=receipt["gasUsed"],
            effective_gas_price=receipt.get("effectiveGasPrice", 0),
            profit=self.parse_profit(receipt) if status == 1 else None,
            block_number=receipt.get("blockNumber", 0),
        )
