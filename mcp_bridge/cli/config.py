# mcp_bridge/cli/config.py
from dotenv import load_dotenv
from pathlib import Path

# cli/config.py lives at <root>/mcp_bridge/cli/config.py
project_root = Path(__file__).parent.parent.parent.resolve()

# Must run before mcp_bridge.settings is imported
load_dotenv(dotenv_path=project_root / '.env', override=True)
