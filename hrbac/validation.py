"""
hrbac/validation.py -- Branding input validation.

BrandingInput is a pydantic v2 model over the four branding fields. Fields are
declared in the order they are checked, so the first entry of
ValidationError.errors() is the first rule that failed. Empty and None values
are "not set" and skip their check.
"""

import re
from collections.abc import Mapping
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

_HEX_COLOR = re.compile(r"#[0-9A-Fa-f]{6}")

TAGLINE_MAX = 200
LOGO_URL_MAX = 500


class BrandingInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    tagline: Optional[str] = None
    logo_url: Optional[str] = None

    @field_validator("primary_color")
    @classmethod
    def _check_primary_color(cls, v: Optional[str]) -> Optional[str]:
        if v and not _HEX_COLOR.fullmatch(v):
            raise ValueError("Invalid primary color format (use #RRGGBB)")
        return v

    @field_validator("secondary_color")
    @classmethod
    def _check_secondary_color(cls, v: Optional[str]) -> Optional[str]:
        if v and not _HEX_COLOR.fullmatch(v):
            raise ValueError("Invalid secondary color format (use #RRGGBB)")
        return v

    @field_validator("tagline")
    @classmethod
    def _check_tagline(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) > TAGLINE_MAX:
            raise ValueError(f"Tagline must be {TAGLINE_MAX} characters or less")
        return v

    @field_validator("logo_url")
    @classmethod
    def _check_logo_url(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) > LOGO_URL_MAX:
            raise ValueError(f"Logo URL must be {LOGO_URL_MAX} characters or less")
        return v


def validate_branding(data: Mapping[str, Any]) -> Optional[str]:
    """Return the first branding rule data breaks, or None when it is valid.

    Keys other than the four branding fields are ignored.
    """
    try:
        BrandingInput.model_validate(dict(data))
    except ValidationError as exc:
        first = exc.errors()[0]
        ctx_error = first.get("ctx", {}).get("error")
        if ctx_error is not None:
            return str(ctx_error)
        # Type errors (e.g. a number where a string belongs) have no ctx.
        return f"Invalid {first['loc'][0]}: {first['msg']}"
    return None
