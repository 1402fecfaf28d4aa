"""
Access tier partitioning.

Splits one genetic dataset into three nested plaintext payloads:

    Tier 1 (basic)     aggregate counts and statistics only
    Tier 2 (detailed)  tier 1 + redacted variant list, gene list, phenotypes
    Tier 3 (full)      tier 2 + the complete original dataset

Every key of tier N is also a key of tier N+1. Large datasets are processed
in chunks with explicit yields so partitioning never blocks the event loop
for long.
"""

import asyncio
import time
from enum import IntEnum
from typing import Any, Dict, Iterable, List, Mapping, Optional
import logging

logger = logging.getLogger(__name__)

# Variant fields that identify an individual or pin down a locus exactly
SENSITIVE_VARIANT_FIELDS = ("sequence", "exactPosition", "individualId")
GENE_SUMMARY_FIELDS = ("symbol", "name", "chromosome")
DEFAULT_ASSEMBLY = "GRCh38"


class AccessTier(IntEnum):
    """Ordinal access level."""
    BASIC = 1
    DETAILED = 2
    FULL = 3


class TierBuilder:
    """
    Builds tier payloads from a dataset.

    The builder is stateless apart from its thresholds, so one instance can
    serve concurrent encryptions.
    """

    def __init__(
        self,
        large_dataset_threshold: int = 1024 * 1024,
        chunk_size: int = 10_000,
        full_tier_reference_threshold: Optional[int] = None,
    ):
        """
        Initialize tier builder.

        Args:
            large_dataset_threshold: Serialized size (bytes) above which chunking kicks in
            chunk_size: Records processed between yields
            full_tier_reference_threshold: Serialized size above which tier 3 carries a
                reference descriptor instead of the dataset (None = always full)
        """
        self.large_dataset_threshold = large_dataset_threshold
        self.chunk_size = chunk_size
        self.full_tier_reference_threshold = full_tier_reference_threshold

    def uses_reference(self, data_size: int) -> bool:
        """True if tier 3 will hold a reference for a dataset of this size."""
        return (
            self.full_tier_reference_threshold is not None
            and data_size > self.full_tier_reference_threshold
        )

    async def build(
        self,
        dataset: Mapping[str, Any],
        data_size: int,
        access_levels: Iterable[int] = (1, 2, 3),
        custom_tiers: Optional[Mapping[int, Mapping[str, Any]]] = None,
    ) -> Dict[int, Dict[str, Any]]:
        """
        Build the payload of every requested tier.

        Args:
            dataset: Validated genetic dataset
            data_size: Size of the dataset's canonical serialization (bytes)
            access_levels: Levels to return
            custom_tiers: Level -> payload overrides replacing the built tiers

        Returns:
            Level -> plaintext payload
        """
        levels = sorted(set(access_levels))
        custom_tiers = custom_tiers or {}
        chunked = data_size > self.large_dataset_threshold

        if chunked:
            logger.info(
                f"Large dataset ({data_size} bytes), partitioning in chunks of {self.chunk_size}"
            )

        tiers: Dict[int, Dict[str, Any]] = {}
        needs_standard = any(level not in custom_tiers for level in levels)

        if needs_standard:
            variants = dataset.get("variants") or []
            genes = dataset.get("genes") or []

            basic = {
                "type": "basic",
                "totalVariants": len(variants),
                "totalGenes": len(genes),
                "dataTypes": list(dataset.keys()),
                "generalStats": await self._calculate_stats(variants, chunked),
                "timestamp": int(time.time() * 1000),
            }

            detailed = {
                **basic,
                "type": "detailed",
                "filteredVariants": await self._redact_variants(variants, chunked),
                "geneList": [
                    {key: gene[key] for key in GENE_SUMMARY_FIELDS if key in gene}
                    for gene in genes
                ],
                "phenotypes": list(dataset.get("phenotypes") or []),
            }

            full = {
                **detailed,
                "type": "full",
                "accessLevel": int(AccessTier.FULL),
                "encryptionLevel": "maximum",
            }
            if self.uses_reference(data_size):
                logger.warning(
                    f"Dataset exceeds {self.full_tier_reference_threshold} bytes, "
                    f"tier 3 will carry a data reference"
                )
                full["dataReference"] = True
                full["reference"] = self.create_data_reference(dataset)
            else:
                full["dataReference"] = False
                full["dataset"] = dict(dataset)

            standard = {1: basic, 2: detailed, 3: full}
            for level in levels:
                if level in standard:
                    tiers[level] = standard[level]

        for level in levels:
            if level in custom_tiers:
                tiers[level] = dict(custom_tiers[level])

        return tiers

    async def _calculate_stats(self, variants: List[Mapping[str, Any]], chunked: bool) -> Dict[str, Any]:
        """Aggregate variant statistics (types, chromosomes, quality)."""
        stats: Dict[str, Any] = {
            "variantTypes": {},
            "chromosomeDistribution": {},
            "qualityMetrics": {},
        }
        qualities: List[float] = []

        for chunk in self._chunks(variants, chunked):
            for variant in chunk:
                variant_type = variant.get("type")
                if variant_type:
                    stats["variantTypes"][variant_type] = stats["variantTypes"].get(variant_type, 0) + 1

                chromosome = variant.get("chromosome")
                if chromosome:
                    key = str(chromosome)
                    stats["chromosomeDistribution"][key] = stats["chromosomeDistribution"].get(key, 0) + 1

                quality = variant.get("quality")
                if isinstance(quality, (int, float)) and not isinstance(quality, bool):
                    qualities.append(float(quality))

            if chunked:
                await asyncio.sleep(0)

        if qualities:
            stats["qualityMetrics"] = {
                "count": len(qualities),
                "mean": round(sum(qualities) / len(qualities), 4),
                "min": min(qualities),
                "max": max(qualities),
            }

        return stats

    async def _redact_variants(self, variants: List[Mapping[str, Any]], chunked: bool) -> List[Dict[str, Any]]:
        """Copy variants without their sensitive fields."""
        redacted: List[Dict[str, Any]] = []
        for chunk in self._chunks(variants, chunked):
            redacted.extend(
                {key: value for key, value in variant.items() if key not in SENSITIVE_VARIANT_FIELDS}
                for variant in chunk
            )
            if chunked:
                await asyncio.sleep(0)
        return redacted

    def _chunks(self, items: List[Any], chunked: bool):
        if not chunked:
            yield items
            return
        for start in range(0, len(items), self.chunk_size):
            yield items[start:start + self.chunk_size]

    @staticmethod
    def create_data_reference(dataset: Mapping[str, Any]) -> Dict[str, Any]:
        """Size-bounded descriptor standing in for a huge dataset."""
        return {
            "variantCount": len(dataset.get("variants") or []),
            "geneCount": len(dataset.get("genes") or []),
            "sequenceCount": len(dataset.get("sequences") or []),
            "phenotypeCount": len(dataset.get("phenotypes") or []),
            "dataTypes": list(dataset.keys()),
            "sampleInfo": dataset.get("sample") or {},
            "assembly": dataset.get("assembly") or DEFAULT_ASSEMBLY,
        }
