# services.py
from dataclasses import dataclass

from assembler import Assembler
from chunks import ChunkSessionStore
from config import Settings
from delivery import DeliveryService
from pathguard import PathGuard
from shares import ShareStore
from sweeper import ExpirationSweeper
from validator import TypeSizeValidator


@dataclass
class Services:
    """Every component, built once per app from one Settings instance."""

    settings: Settings
    guard: PathGuard
    chunks: ChunkSessionStore
    validator: TypeSizeValidator
    store: ShareStore
    assembler: Assembler
    delivery: DeliveryService
    sweeper: ExpirationSweeper


def build_services(settings: Settings) -> Services:
    guard = PathGuard(settings)
    chunks = ChunkSessionStore(settings, guard)
    validator = TypeSizeValidator(settings)
    store = ShareStore(settings, guard)
    return Services(
        settings=settings,
        guard=guard,
        chunks=chunks,
        validator=validator,
        store=store,
        assembler=Assembler(settings, guard, chunks, validator, store),
        delivery=DeliveryService(settings, guard, store),
        sweeper=ExpirationSweeper(settings, store, guard),
    )
