import re

COMMON_SUFFIXES = [
    r'\binc\b', r'\bincorporated\b', r'\bcorp\b', r'\bcorporation\b', r'\bllc\b', r'\bltd\b',
    r'\blimited\b', r'\bco\b', r'\bcompany\b', r'\bgmbh\b', r'\bplc\b',
]

# Words a sender domain or subject tends to carry that are not part of the brand
NOISE_WORDS = [r'\bcareers?\b', r'\bjobs\b', r'\brecruiting\b', r'\btalent\b', r'\bhiring\b', r'\bteam\b']


def normalize_name(name: str) -> str:
    """Normalize company name for equality matching.

    - Lowercases
    - Removes punctuation
    - Strips common corporate suffixes (Inc, LLC, Ltd, etc.) and hiring noise words
    - Collapses whitespace
    """
    if not name:
        return ''
    s = name.lower()
    # remove punctuation (keep alphanumerics and spaces)
    s = re.sub(r'[^a-z0-9\s]', ' ', s)
    for suf in COMMON_SUFFIXES + NOISE_WORDS:
        s = re.sub(suf, ' ', s)
    s = re.sub(r'\s+', ' ', s).strip()
    return s
