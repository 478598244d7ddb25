from typing import Optional

import bleach


def strip_html(value: Optional[str]) -> Optional[str]:
    """Drop every tag from user-supplied text, keep the inner text."""
    if value is None:
        return None
    return bleach.clean(value, tags=[], attributes={}, strip=True).strip()
