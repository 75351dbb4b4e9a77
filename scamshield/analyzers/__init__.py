"""
Analyzers: independent risk signal sources behind one interface.
"""

from scamshield.analyzers.ai_model import AIModelAnalyzer
from scamshield.analyzers.asset_verification import AssetVerificationAnalyzer
from scamshield.analyzers.base import Analyzer, CachingAnalyzer
from scamshield.analyzers.language_pattern import LanguagePatternAnalyzer
from scamshield.analyzers.price_manipulation import PriceManipulationAnalyzer
from scamshield.analyzers.registry import build_default_analyzers
from scamshield.analyzers.scammer_identity import ScammerIdentityAnalyzer

__all__ = [
    "AIModelAnalyzer",
    "Analyzer",
    "AssetVerificationAnalyzer",
    "CachingAnalyzer",
    "LanguagePatternAnalyzer",
    "PriceManipulationAnalyzer",
    "ScammerIdentityAnalyzer",
    "build_default_analyzers",
]
