"""Demo authentication backend that consumes the slider CAPTCHA."""
