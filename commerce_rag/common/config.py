"""
Configuration Management for Commerce RAG

Loads configuration from ~/.commerce_rag/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger("commerce_rag.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".commerce_rag"
CONFIG_PATH = CONFIG_DIR / "config.json"
LOGS_DIR = CONFIG_DIR / "logs"
DEFAULT_DB_PATH = CONFIG_DIR / "commerce.db"

DEFAULT_EMBEDDING_DIMENSION = 8


@dataclass
class DatabaseConfig:
    """Local sqlite store (relational mirror, document index, failure ledger)"""
    path: str = str(DEFAULT_DB_PATH)


@dataclass
class EmbeddingConfig:
    """Embedding provider configuration"""
    provider: str = "deterministic"  # "deterministic" or "http"
    dimension: int = DEFAULT_EMBEDDING_DIMENSION
    endpoint: str = ""
    timeout_ms: int = 5000
    retry_count: int = 3
    retry_delay_ms: int = 75


@dataclass
class BackfillConfig:
    """Backfill engine configuration"""
    batch_size: int = 100
    max_item_attempts: int = 3
    item_retry_delay_ms: int = 125
    failure_alert_threshold: float = 0.1
    failure_list_limit: int = 200


@dataclass
class AgentConfig:
    """Orchestrator and tool router configuration"""
    max_question_length: int = 2000
    default_top_k: int = 5
    low_stock_threshold: int = 5
    top_products_limit: int = 10
    mcp_server_name: str = "commerce_rag_mcp"
    service_token: str = ""


@dataclass
class ServerConfig:
    """Admin HTTP server configuration"""
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"


@dataclass
class CommerceRagConfig:
    """Main Commerce RAG configuration"""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    backfill: BackfillConfig = field(default_factory=BackfillConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _positive_int(value, default: int) -> int:
    """Coerce to a positive int, falling back to default"""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _parse_database_config(data: dict) -> DatabaseConfig:
    """Parse database section from config dict"""
    database_data = data.get("database", {})
    return DatabaseConfig(
        path=database_data.get("path", str(DEFAULT_DB_PATH)),
    )


def _parse_embedding_config(data: dict) -> EmbeddingConfig:
    """Parse embedding section from config dict"""
    embedding_data = data.get("embedding", {})
    return EmbeddingConfig(
        provider=embedding_data.get("provider", "deterministic"),
        dimension=_positive_int(embedding_data.get("dimension"), DEFAULT_EMBEDDING_DIMENSION),
        endpoint=embedding_data.get("endpoint", ""),
        timeout_ms=_positive_int(embedding_data.get("timeout_ms"), 5000),
        retry_count=_positive_int(embedding_data.get("retry_count"), 3),
        retry_delay_ms=_positive_int(embedding_data.get("retry_delay_ms"), 75),
    )


def _parse_backfill_config(data: dict) -> BackfillConfig:
    """Parse backfill section from config dict"""
    backfill_data = data.get("backfill", {})
    return BackfillConfig(
        batch_size=_positive_int(backfill_data.get("batch_size"), 100),
        max_item_attempts=_positive_int(backfill_data.get("max_item_attempts"), 3),
        item_retry_delay_ms=_positive_int(backfill_data.get("item_retry_delay_ms"), 125),
        failure_alert_threshold=float(backfill_data.get("failure_alert_threshold", 0.1)),
        failure_list_limit=_positive_int(backfill_data.get("failure_list_limit"), 200),
    )


def _parse_agent_config(data: dict) -> AgentConfig:
    """Parse agent section from config dict"""
    agent_data = data.get("agent", {})
    return AgentConfig(
        max_question_length=_positive_int(agent_data.get("max_question_length"), 2000),
        default_top_k=_positive_int(agent_data.get("default_top_k"), 5),
        low_stock_threshold=_positive_int(agent_data.get("low_stock_threshold"), 5),
        top_products_limit=_positive_int(agent_data.get("top_products_limit"), 10),
        mcp_server_name=agent_data.get("mcp_server_name", "commerce_rag_mcp"),
        service_token=agent_data.get("service_token", ""),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    """Parse server section from config dict"""
    server_data = data.get("server", {})
    return ServerConfig(
        host=server_data.get("host", "0.0.0.0"),
        port=_positive_int(server_data.get("port"), 8000),
        log_level=server_data.get("log_level", "INFO"),
    )


def load_config(config_path: Optional[Path] = None) -> CommerceRagConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.commerce_rag/config.json)
    3. Default values
    """
    config = CommerceRagConfig()
    path = config_path or CONFIG_PATH

    # Load from config file if exists
    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)

            config.database = _parse_database_config(data)
            config.embedding = _parse_embedding_config(data)
            config.backfill = _parse_backfill_config(data)
            config.agent = _parse_agent_config(data)
            config.server = _parse_server_config(data)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load config file {path}: {e}")

    # Environment variable overrides
    if os.getenv("COMMERCE_RAG_DB_PATH"):
        config.database.path = os.getenv("COMMERCE_RAG_DB_PATH")

    if os.getenv("EMBEDDINGS_PROVIDER"):
        config.embedding.provider = os.getenv("EMBEDDINGS_PROVIDER").strip().lower()
    if os.getenv("EMBEDDING_DIM"):
        config.embedding.dimension = _positive_int(os.getenv("EMBEDDING_DIM"), DEFAULT_EMBEDDING_DIMENSION)
    if os.getenv("EMBEDDINGS_ENDPOINT"):
        config.embedding.endpoint = os.getenv("EMBEDDINGS_ENDPOINT")
    if os.getenv("EMBEDDINGS_TIMEOUT_MS"):
        config.embedding.timeout_ms = _positive_int(os.getenv("EMBEDDINGS_TIMEOUT_MS"), 5000)
    if os.getenv("EMBEDDINGS_RETRY_COUNT"):
        config.embedding.retry_count = _positive_int(os.getenv("EMBEDDINGS_RETRY_COUNT"), 3)
    if os.getenv("EMBEDDINGS_RETRY_DELAY_MS"):
        config.embedding.retry_delay_ms = _positive_int(os.getenv("EMBEDDINGS_RETRY_DELAY_MS"), 75)

    if os.getenv("RAG_BACKFILL_BATCH_SIZE"):
        config.backfill.batch_size = _positive_int(os.getenv("RAG_BACKFILL_BATCH_SIZE"), 100)
    if os.getenv("RAG_BACKFILL_MAX_ATTEMPTS"):
        config.backfill.max_item_attempts = _positive_int(os.getenv("RAG_BACKFILL_MAX_ATTEMPTS"), 3)
    if os.getenv("RAG_BACKFILL_FAILURE_THRESHOLD"):
        try:
            config.backfill.failure_alert_threshold = float(os.getenv("RAG_BACKFILL_FAILURE_THRESHOLD"))
        except ValueError:
            logger.warning("Ignoring invalid RAG_BACKFILL_FAILURE_THRESHOLD")

    if os.getenv("COMMERCE_RAG_PORT"):
        config.server.port = _positive_int(os.getenv("COMMERCE_RAG_PORT"), 8000)
    if os.getenv("COMMERCE_RAG_LOG_LEVEL"):
        config.server.log_level = os.getenv("COMMERCE_RAG_LOG_LEVEL").upper()

    if os.getenv("MCP_SERVICE_TOKEN"):
        config.agent.service_token = os.getenv("MCP_SERVICE_TOKEN")
        config._env_sourced_keys.add("service_token")

    return config


def save_config(config: CommerceRagConfig, config_path: Optional[Path] = None) -> None:
    """Save configuration to file.

    The MCP service token is written as an empty string when it came from
    the environment so that secrets are not persisted to disk.
    """
    path = config_path or CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())
    service_token = "" if "service_token" in env_sourced else config.agent.service_token

    data = {
        "database": {
            "path": config.database.path,
        },
        "embedding": {
            "provider": config.embedding.provider,
            "dimension": config.embedding.dimension,
            "endpoint": config.embedding.endpoint,
            "timeout_ms": config.embedding.timeout_ms,
            "retry_count": config.embedding.retry_count,
            "retry_delay_ms": config.embedding.retry_delay_ms,
        },
        "backfill": {
            "batch_size": config.backfill.batch_size,
            "max_item_attempts": config.backfill.max_item_attempts,
            "item_retry_delay_ms": config.backfill.item_retry_delay_ms,
            "failure_alert_threshold": config.backfill.failure_alert_threshold,
            "failure_list_limit": config.backfill.failure_list_limit,
        },
        "agent": {
            "max_question_length": config.agent.max_question_length,
            "default_top_k": config.agent.default_top_k,
            "low_stock_threshold": config.agent.low_stock_threshold,
            "top_products_limit": config.agent.top_products_limit,
            "mcp_server_name": config.agent.mcp_server_name,
            "service_token": service_token,
        },
        "server": {
            "host": config.server.host,
            "port": config.server.port,
            "log_level": config.server.log_level,
        },
    }

    with open(path, "w") as f:
        json.dump(data, f, indent=2)


def ensure_directories() -> None:
    """Create necessary directories"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
