"""
Hookwatch - Webhook Test & Monitoring Engine
"""

from hookwatch.config import EngineSettings
from hookwatch.engine import WebhookMonitoringEngine

__version__ = "1.0.0"

__all__ = ["EngineSettings", "WebhookMonitoringEngine", "__version__"]
