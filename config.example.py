# config.example.py — Copy to config.py and adapt to your environment
# config.py is in .gitignore — never commit your personal paths or keys.
# Every key can also be set from the environment (KEY or VAULTMAKER_KEY).

# ─── Paths ────────────────────────────────────────────────────────────────────

# Vault the pipeline writes into (Insights/, MOCs/, .vaultmaker/)
VAULT_PATH = "/home/yourname/notes/vault"

# Display name for the vault (defaults to the folder name)
VAULT_NAME = "Research"

# Folder of source documents to track (.md .txt .pdf .docx .doc .pptx .ppt)
SOURCE_DIR = "/home/yourname/notes/sources"

# Global state: saved vault selection and the default log file
STATE_DIR = "/home/yourname/.vaultmaker"

# .env file containing OPENAI_API_KEY / VOYAGE_API_KEY
ENV_FILE = "/home/yourname/.vaultmaker/.env"

# Log file (default: STATE_DIR/vaultmaker.log)
LOG_FILE = "/home/yourname/.vaultmaker/vaultmaker.log"


# ─── Generation ───────────────────────────────────────────────────────────────

# Chat model used by every generation step (OpenAI-compatible API)
GENERATION_MODEL = "gpt-4o-mini"

# Leave as None for api.openai.com, or point at any compatible endpoint
GENERATION_BASE_URL = None

# Per-call timeout; a timed-out call fails its task, which is not retried
GENERATION_TIMEOUT_SECONDS = 120
GENERATION_MAX_RETRIES = 0


# ─── Embeddings ───────────────────────────────────────────────────────────────

# "voyage", "openai" or "none" (keyword retrieval only)
EMBED_PROVIDER = "voyage"
VOYAGE_EMBED_MODEL = "voyage-3-lite"
OPENAI_EMBED_MODEL = "text-embedding-3-small"


# ─── Runtime ──────────────────────────────────────────────────────────────────

# Seconds between rescans of SOURCE_DIR in `vaultmaker watch`
WATCH_POLL_INTERVAL = 5

# Lines kept in the in-memory run log
LOG_RING_SIZE = 100

# Organize clustering once a vault exceeds maxTitlesOrganize notes
TARGET_CLUSTER_SIZE = 40
MAX_CLUSTERS = 12
