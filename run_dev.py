import uvicorn
from dotenv import load_dotenv
import os
from pathlib import Path
import logging

# Logging is configured before the app module is imported by uvicorn
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s run_dev [%(levelname)s] %(message)s'
)
logger = logging.getLogger("mcp_bridge.run_dev")


def _is_truthy(value: str) -> bool:
    return value.lower() in ["true", "1", "yes", "on", "t"]


if __name__ == "__main__":
    project_root = Path(__file__).parent.resolve()
    env_file = project_root / ".env"

    logger.info(f"Working directory: {os.getcwd()}")
    logger.info(f"Looking for environment file: {env_file}")

    if env_file.exists():
        logger.info(f"Loading {env_file}")
        load_dotenv(dotenv_path=env_file, override=True)
    else:
        logger.warning(f"No .env at {env_file}; "
                       "using process environment and settings defaults.")

    # Masked view of the settings that matter most at startup
    logger.info(f"ENCRYPTION_SECRET: {'********' if os.getenv('ENCRYPTION_SECRET') else 'None'}")
    logger.info(f"PROVIDER_CLIENT_ID: {'********' if os.getenv('PROVIDER_CLIENT_ID') else 'None'}")
    logger.info(f"PROVIDER_REDIRECT_URI: {os.getenv('PROVIDER_REDIRECT_URI')}")
    logger.info(f"PUBLIC_BASE_URL: {os.getenv('PUBLIC_BASE_URL')}")
    logger.info(f"STORAGE_BACKEND: {os.getenv('STORAGE_BACKEND')}")
    logger.info(f"REDIS_HOST: {os.getenv('REDIS_HOST')}")
    logger.info(f"DEBUG_MODE: {os.getenv('DEBUG_MODE')}")

    host = os.getenv("DEV_SERVER_HOST", "127.0.0.1")
    port = int(os.getenv("DEV_SERVER_PORT", "8000"))
    uvicorn_log_level = os.getenv("DEV_SERVER_LOG_LEVEL", "info").lower()

    debug_mode = _is_truthy(os.getenv("DEBUG_MODE", "False"))
    reload_bool = _is_truthy(os.getenv("DEV_SERVER_RELOAD", str(debug_mode)))

    logger.info(f"Starting Uvicorn server on {host}:{port} (log level {uvicorn_log_level}, reload {reload_bool})")
    logger.info("App module: mcp_bridge.main:app")

    uvicorn.run(
        "mcp_bridge.main:app",
        host=host,
        port=port,
        log_level=uvicorn_log_level,
        reload=reload_bool
    )
