"""Data ingestion layer - Solana blocks and Serum instruction decoding."""

from serum_order_indexer.ingestor.decoder import (
    DecodedInstruction,
    InstructionDecodeError,
    decode_instruction,
)
from serum_order_indexer.ingestor.models import Block, BlockBatch, Instruction
from serum_order_indexer.ingestor.rpc_source import (
    RetryError,
    SolanaBlockSource,
    SolanaRpcClient,
    SolanaRpcError,
    SolanaRpcTransientError,
)

__all__ = [
    "Block",
    "BlockBatch",
    "DecodedInstruction",
    "Instruction",
    "InstructionDecodeError",
    "RetryError",
    "SolanaBlockSource",
    "SolanaRpcClient",
    "SolanaRpcError",
    "SolanaRpcTransientError",
    "decode_instruction",
]
