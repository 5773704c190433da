from formrelay.config import APP_NAME, APP_VERSION

__version__ = APP_VERSION
