from __future__ import annotations
import os

CACHE_DIR = os.environ.get("VERIFYCI_CACHE_DIR", ".verifyci/cache")
WORK_DIR = os.environ.get("VERIFYCI_WORK_DIR", ".verifyci/work")
MAX_WORKERS = int(os.environ["VERIFYCI_MAX_WORKERS"]) if os.environ.get("VERIFYCI_MAX_WORKERS") else None
CACHE_KEEP = int(os.environ.get("VERIFYCI_CACHE_KEEP", "3"))
OUTPUT_TAIL = int(os.environ.get("VERIFYCI_OUTPUT_TAIL", "4000"))
