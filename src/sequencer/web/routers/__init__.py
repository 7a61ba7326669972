from sequencer.web.routers.domains import router as domains_router
from sequencer.web.routers.sequences import router as sequences_router

__all__ = [
    "domains_router",
    "sequences_router",
]
