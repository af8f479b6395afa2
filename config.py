"""
Sentinel Pipeline Configuration
Config-first approach with typed configuration objects
"""
import os
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional
from dotenv import load_dotenv

from scripts.keyword_scanner.errors import MisconfiguredCredential

load_dotenv()

logger = logging.getLogger(__name__)


@dataclass
class PipelineConfig:
    """General pipeline configuration"""
    name: str
    log_file: str


@dataclass
class Config:
    """Main configuration object"""
    pipeline_config: PipelineConfig
    raw: Dict = field(default_factory=dict, repr=False)

    # Environment variables
    supabase_url: str = field(init=False)
    supabase_key: str = field(init=False)
    twitter_bearer_token: Optional[str] = field(init=False)

    def __post_init__(self):
        """Load environment variables after initialization"""
        self.supabase_url = os.getenv('SUPABASE_URL')
        self.supabase_key = os.getenv('SUPABASE_KEY')
        self.twitter_bearer_token = os.getenv('TWITTER_BEARER_TOKEN')

        # The bearer token is only needed in official API mode; the fetcher reports it missing
        required_env = ['SUPABASE_URL', 'SUPABASE_KEY']
        missing_env = [env for env in required_env if not getattr(self, env.lower())]
        if missing_env:
            raise MisconfiguredCredential(f"Missing required environment variables: {missing_env}")


# Global config instance
_config_instance: Optional[Config] = None


def load_config(config_path: str = "config.json") -> Config:
    """
    Load configuration from JSON file with typed objects

    Args:
        config_path: Path to config.json file

    Returns:
        Typed Config object
    """
    global _config_instance

    if _config_instance is not None:
        return _config_instance

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)

        pipeline_data = config_data['pipeline_config']
        pipeline_config = PipelineConfig(
            name=pipeline_data['name'],
            log_file=pipeline_data.get('log_file', 'sentinel_pipeline.log')
        )

        _config_instance = Config(
            pipeline_config=pipeline_config,
            raw=config_data
        )

        logger.info(f"Configuration loaded successfully from {config_path}")
        return _config_instance

    except FileNotFoundError:
        raise ValueError(f"Configuration file not found: {config_path}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in configuration file: {e}")
    except KeyError as e:
        raise ValueError(f"Missing required configuration key: {e}")


def get_config() -> Config:
    """Get the global configuration instance"""
    if _config_instance is None:
        return load_config()
    return _config_instance


def reset_config() -> None:
    """Drop the cached instance (tests and long-lived workers reloading config.json)"""
    global _config_instance
    _config_instance = None
