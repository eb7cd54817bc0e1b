"""Payment gateway adapters."""
from .base import PaymentGateway, compute_signature, verify_signature
from .credentials import Credential, CredentialCache
from .fapshi import FapshiGateway
from .mtn_momo import MtnMomoGateway, normalize_msisdn
from .offline import OfflineGateway
from .registry import GatewayRegistry, build_gateway_registry
from .swychr import SwychrGateway

__all__ = [
    "Credential",
    "CredentialCache",
    "FapshiGateway",
    "GatewayRegistry",
    "MtnMomoGateway",
    "OfflineGateway",
    "PaymentGateway",
    "SwychrGateway",
    "build_gateway_registry",
    "compute_signature",
    "normalize_msisdn",
    "verify_signature",
]
