"""
Test suite for compression and content addressing.
"""

import pytest

from genevault.core.compression import CompressionAlgorithm, CompressionEngine, CompressionResult
from genevault.core.content_addressing import (
    MAX_LOCATOR_LENGTH,
    ContentAddressingEngine,
    ContentID,
    build_locator,
    canonical_json,
    create_gateway_url,
    is_truncated,
    parse_locator,
)


# ===== FIXTURES =====

@pytest.fixture
def compression_engine():
    """Provide a compression engine instance."""
    return CompressionEngine()


@pytest.fixture
def content_addressing_engine():
    """Provide a content addressing engine instance."""
    return ContentAddressingEngine()


@pytest.fixture
def sample_data():
    """Provide package-like sample data."""
    return b'{"variants":[{"chromosome":"1","type":"SNP"}]}' * 200


# ===== COMPRESSION TESTS =====

@pytest.mark.unit
class TestCompression:
    """Test compression engine functionality."""

    @pytest.mark.parametrize("algorithm", list(CompressionAlgorithm))
    def test_algorithm_round_trip(self, compression_engine, sample_data, algorithm):
        """Every algorithm restores the original bytes."""
        result = compression_engine.compress(sample_data, algorithm)

        assert isinstance(result, CompressionResult)
        assert result.algorithm == algorithm
        assert result.original_size == len(sample_data)
        assert compression_engine.decompress(result.compressed_data, algorithm) == sample_data

    def test_default_algorithm(self, compression_engine, sample_data):
        """ZSTD is the default and shrinks repetitive data."""
        result = compression_engine.compress(sample_data)

        assert result.algorithm == CompressionAlgorithm.ZSTD
        assert result.compression_ratio > 1.0

    def test_from_name(self):
        """Engines can be built from configuration names."""
        assert CompressionEngine.from_name("lz4").default_algorithm == CompressionAlgorithm.LZ4
        assert CompressionEngine.from_name("zstd", enabled=False).default_algorithm == CompressionAlgorithm.NONE

        with pytest.raises(ValueError):
            CompressionEngine.from_name("rar")

    def test_stats(self, compression_engine, sample_data):
        """Usage per algorithm is tracked."""
        compression_engine.compress(sample_data, CompressionAlgorithm.ZLIB)
        compression_engine.compress(sample_data, CompressionAlgorithm.ZLIB)
        stats = compression_engine.get_stats()

        assert stats["total_compressed"] == 2
        assert stats["algorithm_usage"] == {"zlib": 2}
        assert stats["space_saved_bytes"] > 0


# ===== CONTENT ADDRESSING TESTS =====

@pytest.mark.unit
class TestContentAddressing:
    """Test checksums, dataset ids and locators."""

    def test_canonical_json_key_order(self):
        """Key order does not change the canonical bytes."""
        assert canonical_json({"b": 1, "a": [1, 2]}) == canonical_json({"a": [1, 2], "b": 1})
        assert canonical_json({"a": 1}) == b'{"a":1}'

    def test_canonical_json_rejects_nan(self):
        """Non-finite floats are not representable."""
        with pytest.raises(ValueError):
            canonical_json({"x": float("nan")})

    def test_checksums(self, content_addressing_engine):
        """Checksums are stable and verifiable."""
        record = {"genes": ["BRCA1"], "count": 1}
        checksum = content_addressing_engine.compute_checksum(record)

        assert len(checksum) == 64
        assert content_addressing_engine.verify_checksum({"count": 1, "genes": ["BRCA1"]}, checksum)
        assert not content_addressing_engine.verify_checksum({"count": 2, "genes": ["BRCA1"]}, checksum)

    def test_content_id(self, content_addressing_engine):
        """Content ids expose hex and a short repr."""
        cid = content_addressing_engine.compute_content_id(b"data")

        assert isinstance(cid, ContentID)
        assert str(cid) == cid.hex
        assert repr(cid).startswith("ContentID(sha256:")

    def test_dataset_id_bound_to_owner(self, content_addressing_engine):
        """Same content and owner gives the same id; another owner does not."""
        dataset = {"variants": [{"chromosome": "1"}]}

        first = content_addressing_engine.generate_dataset_id(dataset, "alice")
        assert first == content_addressing_engine.generate_dataset_id(dict(dataset), "alice")
        assert first != content_addressing_engine.generate_dataset_id(dataset, "bob")

    def test_unsupported_hash(self):
        """Unknown hash algorithms are refused."""
        with pytest.raises(ValueError):
            ContentAddressingEngine(hash_algorithm="md4")

    def test_locator_round_trip(self):
        """Short locators keep the full filename."""
        locator = build_locator("QmDir", "data.gvpkg")

        assert locator == "ipfs://QmDir/data.gvpkg"
        assert parse_locator(locator) == ("QmDir", "data.gvpkg")
        assert parse_locator("QmDir") == ("QmDir", None)
        assert parse_locator("https://ipfs.io/ipfs/QmDir/data.gvpkg") == ("QmDir", "data.gvpkg")

    def test_locator_truncation(self):
        """Long filenames are cut to the locator limit with a visible marker."""
        locator = build_locator("QmDir", "x" * 500)
        _, filename = parse_locator(locator)

        assert len(locator) == MAX_LOCATOR_LENGTH
        assert locator.endswith("...")
        assert is_truncated(filename)
        assert build_locator("QmDir", "x" * 500) == locator
        assert not is_truncated("data.gvpkg")

    def test_address_too_long(self):
        """An address that cannot fit is an error, not a silent cut."""
        with pytest.raises(ValueError):
            build_locator("Q" * 300)

    def test_gateway_url(self):
        """Gateway URLs are built from addresses or locators."""
        assert create_gateway_url("QmDir") == "https://ipfs.io/ipfs/QmDir"
        assert create_gateway_url("ipfs://QmDir/a.bin", gateway="https://gw.example/") == \
            "https://gw.example/ipfs/QmDir/a.bin"
