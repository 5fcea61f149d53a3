from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    api_base_url: str = "http://localhost:3030"
    route_id: str = "T7890"
    target_stop_id: str | None = None
    target_label: str = "KL Gateway"
    poll_interval_seconds: int = 15
    poll_max_overlap: int = 3
    request_timeout_seconds: float = 10.0
    redis_url: str = ""
    map_output_path: str = "t789_map.html"
    map_center_lat: float = 3.1390
    map_center_lon: float = 101.6869
    map_zoom: int = 13
    map_fly_zoom: int = 16

    model_config = {"env_prefix": "BUSTRACK_", "case_sensitive": False}


settings = Settings()
