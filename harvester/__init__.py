"""
Favorites Listing Harvester
Collects listing references from lazily-rendered favorites pages and
extracts a structured record from each listing's detail page.

CLI Usage:
    python -m harvester <favorites-url> [<favorites-url> ...] [options]

    Options:
        --out           Extra JSON output path
        --delay-min     Minimum politeness delay in ms (default: 1000)
        --delay-max     Maximum politeness delay in ms (default: 2000)
        --concurrency   Detail pages extracted at once (default: 3)
        --state-file    Session snapshot (default: local/state-seloger.json)
        --bootstrap     Capture the session in a visible browser first
"""

from .run_config import HarvestRunConfig, DelayRange
from .models import ItemReference, ListingRecord, PauseEvent, PauseOutcome
from .errors import (
    HarvestError,
    ConfigError,
    SessionMissingError,
    CollectionLoadError,
    PauseAborted,
)
from .utils import canonicalize, parse_price, parse_area
from .extractor import FieldExtractor
from .discovery import LinkDiscoveryEngine, DiscoveryState
from .scheduler import ExtractionScheduler
from .pause_controller import PauseController, PauseState
from .pipeline import HarvestPipeline, HarvestResult

__all__ = [
    'HarvestRunConfig',
    'DelayRange',
    'ItemReference',
    'ListingRecord',
    'PauseEvent',
    'PauseOutcome',
    'HarvestError',
    'ConfigError',
    'SessionMissingError',
    'CollectionLoadError',
    'PauseAborted',
    'canonicalize',
    'parse_price',
    'parse_area',
    'FieldExtractor',
    'LinkDiscoveryEngine',
    'DiscoveryState',
    'ExtractionScheduler',
    'PauseController',
    'PauseState',
    'HarvestPipeline',
    'HarvestResult',
]

__version__ = '1.0.0'
