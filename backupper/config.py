import os
import tempfile
from dataclasses import dataclass
from typing import Optional


class Config:
    """Base configuration"""

    # Database (run history)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/backupper.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Triggers file
    BACKUPPER_CONFIG = os.environ.get('BACKUPPER_CONFIG') or '/data/backupper.yml'

    # Workspaces are created under this directory
    TEMP_DIR = os.environ.get('TEMP_DIR') or '/data/temp'

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'

    # Number of storages a package is transferred to in parallel
    STORE_CONCURRENCY = int(os.environ.get('STORE_CONCURRENCY') or 1)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "backupper.db")}'
    BACKUPPER_CONFIG = os.environ.get('BACKUPPER_CONFIG') or os.path.join(BASE_DIR, 'backupper.yml')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    TEMP_DIR = os.path.join(tempfile.gettempdir(), 'backupper-test')
    BACKUPPER_CONFIG = None
    # File logging is disabled when LOG_DIR is empty
    LOG_DIR = None


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


@dataclass(frozen=True)
class Settings:
    """
    Explicit runtime settings handed to the run coordinator.

    Attributes:
        temp_dir: Directory workspaces are created in
        config_file: Path to the triggers file
        store_concurrency: Parallel storage transfers (1 = sequential)
    """
    temp_dir: str
    config_file: Optional[str] = None
    store_concurrency: int = 1

    @classmethod
    def from_app_config(cls, app_config) -> 'Settings':
        """Build settings from a Flask app.config mapping."""
        return cls(
            temp_dir=app_config['TEMP_DIR'],
            config_file=app_config.get('BACKUPPER_CONFIG'),
            store_concurrency=max(1, int(app_config.get('STORE_CONCURRENCY') or 1))
        )
