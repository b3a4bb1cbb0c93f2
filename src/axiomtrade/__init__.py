"""axiomtrade - authenticated-session core for the Axiom Trade API."""

from axiomtrade.client import EnhancedClient
from axiomtrade.config import Config, load_config
from axiomtrade.errors import AxiomError

__all__ = ["AxiomError", "Config", "EnhancedClient", "load_config"]
__version__ = "0.1.0"
