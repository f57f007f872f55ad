"""
Configuration Loader - Manages YAML configuration and environment variables
"""
import copy
import os
from typing import Any, Dict, Optional, Tuple

import yaml

DEFAULT_CONFIG_PATH = "config.yaml"


class Config:
    """Configuration manager for SeedMix"""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH, data: Optional[Dict[str, Any]] = None):
        self.config_path = config_path
        self.config = data if data is not None else self._load_config()
        self._validate_config()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build a config from an in-memory mapping (no file)."""
        return cls(config_path="<dict>", data=copy.deepcopy(data))

    def _load_config(self) -> dict:
        """Load configuration from YAML file"""
        if not os.path.exists(self.config_path):
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}

    def _validate_config(self):
        """Validate required configuration fields"""
        required_fields = [
            ('lastfm', 'api_key'),
        ]

        for section, field in required_fields:
            if section not in self.config:
                raise ValueError(f"Missing configuration section: {section}")
            if field not in (self.config[section] or {}):
                raise ValueError(f"Missing configuration field: {section}.{field}")

            # Env override may stand in for a placeholder
            value = self.config[section][field]
            if field == 'api_key' and os.getenv(f"{section.upper()}_API_KEY"):
                continue
            if not value or str(value).startswith('YOUR_'):
                raise ValueError(f"Please set {section}.{field} in {self.config_path}")

        provider = self.llm_provider
        if provider not in ('openai', 'anthropic', 'none'):
            raise ValueError(f"Unsupported llm.provider: {provider}")

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """
        Get configuration value

        Args:
            section: Configuration section
            key: Configuration key
            default: Default value if not found

        Returns:
            Configuration value or default
        """
        if section not in self.config or self.config[section] is None:
            return default
        return self.config[section].get(key, default)

    # Metadata sources ---------------------------------------------------

    @property
    def lastfm_api_key(self) -> str:
        """Get Last.FM API key (with environment variable override)"""
        return os.getenv('LASTFM_API_KEY') or self.config['lastfm']['api_key']

    @property
    def user_agent(self) -> str:
        """Client-identifying header sent to every metadata source"""
        app = self.get('musicbrainz', 'user_agent', 'SeedMix/1.0')
        contact = self.get('musicbrainz', 'contact')
        return f"{app} ( {contact} )" if contact else app

    @property
    def http_timeout_seconds(self) -> float:
        return float(self.get('pipeline', 'http_timeout_seconds', 20))

    def rate_limit(self, api_name: str) -> Tuple[float, float]:
        """(capacity, refill per second) for the named API bucket"""
        defaults = {'musicbrainz': (1.0, 1.0), 'lastfm': (5.0, 5.0)}
        capacity, rate = defaults.get(api_name, (1.0, 1.0))
        section = self.get('rate_limits', api_name, {}) or {}
        return (
            float(section.get('capacity', capacity)),
            float(section.get('refill_per_second', rate)),
        )

    # LLM ----------------------------------------------------------------

    @property
    def llm_provider(self) -> str:
        return str(self.get('llm', 'provider', 'openai')).lower()

    @property
    def llm_api_key(self) -> str:
        """API key for the configured provider (with environment variable override)"""
        env_name = {'openai': 'OPENAI_API_KEY', 'anthropic': 'ANTHROPIC_API_KEY'}.get(self.llm_provider)
        if env_name and os.getenv(env_name):
            return os.getenv(env_name)
        key = self.get('llm', 'api_key', '') or ''
        return '' if str(key).startswith('YOUR_') else key

    @property
    def llm_model(self) -> str:
        default = 'claude-sonnet-4-20250514' if self.llm_provider == 'anthropic' else 'gpt-4o-mini'
        return self.get('llm', 'model', default)

    @property
    def llm_timeout_seconds(self) -> float:
        return float(self.get('llm', 'timeout_seconds', 45))

    @property
    def llm_max_tokens(self) -> int:
        return int(self.get('llm', 'max_tokens', 4096))

    # Pipeline -----------------------------------------------------------

    @property
    def candidate_multiplier(self) -> int:
        """Candidate pool target = playlist size x multiplier"""
        return int(self.get('pipeline', 'candidate_multiplier', 4))

    @property
    def stage_timeout_seconds(self) -> float:
        return float(self.get('pipeline', 'stage_timeout_seconds', 120))

    @property
    def enrich_workers(self) -> int:
        return int(self.get('pipeline', 'enrich_workers', 5))

    @property
    def status_poll_interval_seconds(self) -> float:
        return float(self.get('pipeline', 'status_poll_interval_seconds', 1.0))

    @property
    def vector_index_path(self) -> Optional[str]:
        return self.get('pipeline', 'vector_index_path')

    # Storage ------------------------------------------------------------

    @property
    def state_db_path(self) -> str:
        return self.get('storage', 'state_db_path', 'data/pipeline.db')

    @property
    def cache_db_path(self) -> str:
        return self.get('storage', 'cache_db_path', 'data/metadata_cache.db')

    @property
    def archive_dir(self) -> str:
        return self.get('storage', 'archive_dir', 'data/archive')

    # Logging ------------------------------------------------------------

    @property
    def log_level(self) -> str:
        return os.getenv('LOG_LEVEL') or self.get('logging', 'level', 'INFO')

    @property
    def log_file(self) -> Optional[str]:
        return os.getenv('LOG_FILE') or self.get('logging', 'file')
