"""
Secret Masking
Redacts credentials from reason strings before they reach logs or step
summaries. Upstream API errors sometimes echo request headers back.
"""

import re
from typing import Dict


# ============================================================================
# Secret Patterns to Detect and Mask
# ============================================================================

SECRET_PATTERNS: Dict[str, str] = {
    # GitHub tokens (classic, fine-grained, app installation)
    r'gh[pousr]_[A-Za-z0-9]{20,}': 'GITHUB_TOKEN',
    r'github_pat_[A-Za-z0-9_]{20,}': 'GITHUB_TOKEN',
    
    # Generic tokens
    r'(?i)(bearer\s+)[A-Za-z0-9\-_\.]{20,}': 'BEARER_TOKEN',
    r'(?i)(api[_-]?key|apikey)["\s:=]+[A-Za-z0-9\-_]{20,}': 'API_KEY',
    r'(?i)(token)["\s:=]+[A-Za-z0-9\-_\.]{20,}': 'TOKEN',
    
    # JWT tokens
    r'eyJ[A-Za-z0-9\-_]+\.eyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+': 'JWT_TOKEN',
}

_COMPILED = [(re.compile(pattern), label) for pattern, label in SECRET_PATTERNS.items()]


def mask_secret(value: str, show_chars: int = 4) -> str:
    """
    Mask a secret value, showing only first few characters
    
    Returns:
        Masked string like "ghp_...***MASKED***"
    """
    if not value or len(value) < show_chars + 4:
        return "***MASKED***"
    
    return f"{value[:show_chars]}...***MASKED***"


def mask_string(text: str) -> str:
    """Scan a string for secret patterns and mask them"""
    if not text:
        return text
    
    result = text
    for pattern, label in _COMPILED:
        result = pattern.sub(f"***{label}_MASKED***", result)
    
    return result
