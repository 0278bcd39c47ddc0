import os
import sys
from dotenv import load_dotenv

load_dotenv()

# Root for everything the tool keeps on disk (personal store, directory trust stores, staging)
DATA_DIR = os.getenv("SCRIPTSIGN_DATA_DIR", "var/scriptsign")
# auto|powershell|file|memory
BACKEND = os.getenv("SCRIPTSIGN_BACKEND", "auto").lower()
POWERSHELL = os.getenv("SCRIPTSIGN_POWERSHELL", "powershell")
POWERSHELL_TIMEOUT_SEC = float(os.getenv("SCRIPTSIGN_POWERSHELL_TIMEOUT_SEC", "30"))
LOG_LEVEL = os.getenv("SCRIPTSIGN_LOG_LEVEL", "INFO").upper()
CONFIG_PATH = os.getenv("SCRIPTSIGN_CONFIG", os.path.join("config", "scriptsign.yml"))

POLICY_FILE = os.getenv("SCRIPTSIGN_POLICY_FILE", os.path.join(DATA_DIR, "policies.json"))
PERSONAL_STORE_DIR = os.getenv("SCRIPTSIGN_PERSONAL_STORE", os.path.join(DATA_DIR, "my"))
TRUST_STORE_DIR = os.getenv("SCRIPTSIGN_TRUST_STORE_DIR", os.path.join(DATA_DIR, "trust"))


def resolve_backend(name: str | None = None) -> str:
    backend = (name or BACKEND).lower()
    if backend == "auto":
        return "powershell" if sys.platform == "win32" else "file"
    if backend not in ("powershell", "file", "memory"):
        raise ValueError(f"unknown backend: {backend}")
    return backend
