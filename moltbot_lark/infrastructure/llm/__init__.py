# Model backend
from .moltbot_client import MoltbotClient, map_status_error, parse_sse_line

__all__ = ["MoltbotClient", "map_status_error", "parse_sse_line"]
