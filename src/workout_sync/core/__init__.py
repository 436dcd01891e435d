"""Remote transport and async helpers shared by the CLI and the sync engine."""

from .async_utils import run_sync
from .client import DocumentStoreClient

__all__ = ["DocumentStoreClient", "run_sync"]
