import logging
import time
from dataclasses import dataclass

from flask import Flask, current_app

from utils.cache import TTLCache
from utils.connections import ConnectionRegistry
from utils.repositories import ConnectionStore, GradeProjectionStore, SectionRepository
from utils.synchronizer import GradeSynchronizer
from utils.transmutation import DEFAULT_REVISION, get_rule

logger = logging.getLogger(__name__)

EXTENSION_KEY = "gradesync"


@dataclass
class Services:
    cache: TTLCache
    sections: SectionRepository
    projections: GradeProjectionStore
    connections: ConnectionStore
    registry: ConnectionRegistry
    synchronizer: GradeSynchronizer


def build_services(cache_ttl: float, clock=None, default_revision: str = DEFAULT_REVISION) -> Services:
    # unknown revisions fail at startup rather than on the first recompute
    get_rule(default_revision)

    cache = TTLCache(default_ttl=cache_ttl, clock=clock or time.monotonic)
    sections = SectionRepository()
    projections = GradeProjectionStore()
    connections = ConnectionStore()
    registry = ConnectionRegistry(connections, projections)
    synchronizer = GradeSynchronizer(sections, projections, registry, cache, default_revision)
    return Services(cache, sections, projections, connections, registry, synchronizer)


def init_services(app: Flask) -> Services:
    """Build one set of services per app; the cache lives as long as the app."""
    services = build_services(
        cache_ttl=float(app.config.get("GRADES_CACHE_TTL_SECONDS", 300)),
        clock=app.config.get("GRADES_CACHE_CLOCK"),
        default_revision=app.config.get("TRANSMUTATION_REVISION") or DEFAULT_REVISION,
    )
    app.extensions[EXTENSION_KEY] = services
    logger.info(
        f"Grade services ready (cache TTL {services.cache.default_ttl}s, "
        f"default transmutation {services.synchronizer.default_revision})"
    )
    return services


def get_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]
