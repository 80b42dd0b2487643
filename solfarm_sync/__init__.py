"""Farm catalog sync and hydration pipeline for Solana farms."""

from .block_time import BlockTimeEstimator, estimate_slot_duration
from .chain_state import ChainStateParser
from .config import FarmSyncSettings, load_settings
from .descriptors import DescriptorSource
from .hydrate import Hydrator, hydrate_farm_info
from .orchestrator import FarmPipeline

__all__ = [
    "BlockTimeEstimator",
    "ChainStateParser",
    "DescriptorSource",
    "FarmPipeline",
    "FarmSyncSettings",
    "Hydrator",
    "estimate_slot_duration",
    "hydrate_farm_info",
    "load_settings",
]
