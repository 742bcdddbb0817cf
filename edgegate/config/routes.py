def build_route_table(origin_url: str) -> dict:
    return {
        "/": {
            "backend": origin_url,
            "retries": 2,
            "retry_delay": 0.1,
            "timeout": 10.0,
        },
    }
