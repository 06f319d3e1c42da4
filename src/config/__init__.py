"""Configuration module — exports Settings and the routing-table loader."""

from src.config.loader import load_routing_table, parse_routing_table
from src.config.settings import Settings

__all__ = ["Settings", "load_routing_table", "parse_routing_table"]
