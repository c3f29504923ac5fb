"""Call-site and literal matchers"""

from .call_site_matcher import CallSiteMatcher
from .literal_matcher import LiteralMatcher, classify, extract_ports, MAX_LITERAL_LENGTH

__all__ = [
    'CallSiteMatcher',
    'LiteralMatcher',
    'classify',
    'extract_ports',
    'MAX_LITERAL_LENGTH',
]
