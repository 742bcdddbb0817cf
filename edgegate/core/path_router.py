
from typing import Any, Optional


class PathRouter:
    def __init__(self, route_table: dict[str, Any]):
        self.route_table = route_table

    def match(self, path: str) -> tuple[Optional[str], Optional[str], dict]:
        """Longest matching prefix wins. Route values are a config dict or a bare backend URL."""
        for route_prefix in sorted(self.route_table, key=len, reverse=True):
            if path.startswith(route_prefix):
                config = self.route_table[route_prefix]
                if isinstance(config, str):
                    config = {"backend": config}
                return route_prefix, config["backend"], config
        return None, None, {}
