"""
Compression for serialized encrypted packages.

The orchestrator only depends on the compress/decompress pair, so any
algorithm (including NONE) can be plugged in. The algorithm used is recorded
in upload metadata and read back on retrieval, so changing the configured
default never breaks older datasets.
"""

import time
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
import logging

import brotli
import lz4.frame as lz4
import zstandard as zstd

logger = logging.getLogger(__name__)


class CompressionAlgorithm(Enum):
    """Supported compression algorithms."""
    NONE = "none"
    ZLIB = "zlib"      # Standard library, good general purpose
    ZSTD = "zstd"      # Best general-purpose
    LZ4 = "lz4"        # Ultra-fast, lower ratio
    BROTLI = "brotli"  # Excellent for JSON-like payloads


@dataclass
class CompressionResult:
    """Result of compression operation."""
    algorithm: CompressionAlgorithm
    compressed_data: bytes
    original_size: int
    compressed_size: int
    compression_time_ms: float

    @property
    def compression_ratio(self) -> float:
        """original_size / compressed_size (higher is better)."""
        if self.compressed_size == 0:
            return 1.0
        return self.original_size / self.compressed_size


class CompressionEngine:
    """
    Multi-algorithm compression engine.

    Ciphertext itself does not compress, but the package envelope (msgpack
    framing, metadata, key records) does a little, and the NONE algorithm
    keeps the interface honoured when compression is disabled.
    """

    def __init__(
        self,
        default_algorithm: CompressionAlgorithm = CompressionAlgorithm.ZSTD,
        zstd_level: int = 3,  # 1-22, 3 is good balance
        zlib_level: int = 6,
        brotli_quality: int = 5,
    ):
        """
        Initialize compression engine.

        Args:
            default_algorithm: Default compression algorithm
            zstd_level: Zstandard compression level (1-22)
            zlib_level: zlib compression level (0-9)
            brotli_quality: Brotli quality (0-11)
        """
        self.default_algorithm = default_algorithm
        self.zstd_level = zstd_level
        self.zlib_level = zlib_level
        self.brotli_quality = brotli_quality

        self.stats: Dict[str, Any] = {
            "total_compressed": 0,
            "total_original_bytes": 0,
            "total_compressed_bytes": 0,
            "algorithm_usage": {},
        }

        self.compressors = {
            CompressionAlgorithm.NONE: lambda d: d,
            CompressionAlgorithm.ZLIB: lambda d: zlib.compress(d, level=self.zlib_level),
            CompressionAlgorithm.ZSTD: lambda d: zstd.ZstdCompressor(level=self.zstd_level).compress(d),
            CompressionAlgorithm.LZ4: lz4.compress,
            CompressionAlgorithm.BROTLI: lambda d: brotli.compress(d, quality=self.brotli_quality),
        }
        self.decompressors = {
            CompressionAlgorithm.NONE: lambda d: d,
            CompressionAlgorithm.ZLIB: zlib.decompress,
            CompressionAlgorithm.ZSTD: lambda d: zstd.ZstdDecompressor().decompress(d),
            CompressionAlgorithm.LZ4: lz4.decompress,
            CompressionAlgorithm.BROTLI: brotli.decompress,
        }

    @classmethod
    def from_name(cls, name: str, enabled: bool = True) -> "CompressionEngine":
        """Engine whose default is the named algorithm (NONE when disabled)."""
        if not enabled:
            return cls(default_algorithm=CompressionAlgorithm.NONE)
        return cls(default_algorithm=CompressionAlgorithm(name))

    def compress(
        self,
        data: bytes,
        algorithm: Optional[CompressionAlgorithm] = None
    ) -> CompressionResult:
        """
        Compress data using specified or default algorithm.

        Args:
            data: Raw data to compress
            algorithm: Compression algorithm (None = use default)

        Returns:
            CompressionResult with compressed data and metrics
        """
        if algorithm is None:
            algorithm = self.default_algorithm

        start = time.perf_counter()
        compressed_data = self.compressors[algorithm](data)
        elapsed_ms = (time.perf_counter() - start) * 1000

        self._update_stats(algorithm, len(data), len(compressed_data))

        return CompressionResult(
            algorithm=algorithm,
            compressed_data=compressed_data,
            original_size=len(data),
            compressed_size=len(compressed_data),
            compression_time_ms=elapsed_ms,
        )

    def decompress(self, compressed_data: bytes, algorithm: CompressionAlgorithm) -> bytes:
        """
        Decompress data.

        Args:
            compressed_data: Compressed data
            algorithm: Algorithm used for compression

        Returns:
            Original decompressed data
        """
        if algorithm not in self.decompressors:
            raise ValueError(f"Unsupported decompression algorithm: {algorithm}")
        return self.decompressors[algorithm](compressed_data)

    def _update_stats(self, algorithm: CompressionAlgorithm, original_size: int, compressed_size: int):
        """Update compression statistics."""
        self.stats["total_compressed"] += 1
        self.stats["total_original_bytes"] += original_size
        self.stats["total_compressed_bytes"] += compressed_size

        algo_name = algorithm.value
        self.stats["algorithm_usage"][algo_name] = self.stats["algorithm_usage"].get(algo_name, 0) + 1

    def get_stats(self) -> Dict[str, Any]:
        """Get compression statistics."""
        total_compressed = self.stats["total_compressed_bytes"]
        overall_ratio = (
            self.stats["total_original_bytes"] / total_compressed
            if total_compressed > 0
            else 1.0
        )
        return {
            **self.stats,
            "overall_compression_ratio": overall_ratio,
            "space_saved_bytes": self.stats["total_original_bytes"] - total_compressed,
        }
