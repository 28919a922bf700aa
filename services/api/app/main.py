# FridgeMate API Main Entry Point
import logging
import sys
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from .errors import DomainError, domain_error_handler
from .settings import settings
from .routers.ready import router as ready_router
from .routers.images import router as images_router
from .routers.inventory import router as inventory_router
from .routers.recipes import router as recipes_router
from .routers.profile import router as profile_router

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger("fridgemate")

# Rate limiter (per-IP)
limiter = Limiter(key_func=get_remote_address, default_limits=["100/minute"])

app = FastAPI(title="FridgeMate API", version="0.1.0")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(DomainError, domain_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ready_router, prefix="/api", tags=["ready"])
app.include_router(images_router, prefix="/api", tags=["images"])
app.include_router(inventory_router, prefix="/api/inventory", tags=["inventory"])
app.include_router(recipes_router, prefix="/api", tags=["recipes"])
app.include_router(profile_router, prefix="/api", tags=["profile"])
