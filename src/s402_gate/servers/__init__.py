from .apps import S402Server
from .challenge import build_payment_challenge, build_payment_request, generate_nonce
from .config import S402Settings, load_settings, parse_price_table
from .flows import validate_payment_parameters, parse_proof, setup_event_bus
from .pricing import RoutePricing
from ..engine.events import VerificationMode

__all__ = [
    "S402Server",
    "VerificationMode",
    "S402Settings",
    "load_settings",
    "parse_price_table",
    "RoutePricing",
    "build_payment_challenge",
    "build_payment_request",
    "generate_nonce",
    "validate_payment_parameters",
    "parse_proof",
    "setup_event_bus",
]
