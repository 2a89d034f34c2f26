import os

# Environment
APP_ENV = os.getenv("APP_ENV", "development").strip().lower()
IS_DEV_ENV = APP_ENV in {"dev", "development", "local", "test"}
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if IS_DEV_ENV else "INFO").strip().upper()


def _parse_origins(raw: str) -> list[str]:
    values = [value.strip() for value in raw.split(",")]
    return [value for value in values if value]


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on"}


FRONTEND_ORIGINS = _parse_origins(
    os.getenv(
        "FRONTEND_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
    )
)

if "*" in FRONTEND_ORIGINS:
    raise RuntimeError("Insecure CORS configuration: wildcard origins are not allowed.")

# Query execution backend (prefer QUERY_BACKEND_URL, fallback to URL_DATA_CRUD)
QUERY_BACKEND_URL = (
    os.getenv("QUERY_BACKEND_URL") or os.getenv("URL_DATA_CRUD") or ""
).strip().rstrip("/")
QUERY_BACKEND_TIMEOUT = float(os.getenv("QUERY_BACKEND_TIMEOUT", "60"))

# Query defaults
DEFAULT_PAGE_LIMIT = max(1, int(os.getenv("DEFAULT_PAGE_LIMIT", "100")))
DEFAULT_EDGE_OPTIONAL = _parse_bool(os.getenv("DEFAULT_EDGE_OPTIONAL", "true"))
MAX_GRAPH_NODES = max(1, int(os.getenv("MAX_GRAPH_NODES", "200")))

# Designer layout for expanded graphs
NODE_X_SPACING = int(os.getenv("NODE_X_SPACING", "260"))
NODE_Y_SPACING = int(os.getenv("NODE_Y_SPACING", "140"))
