"""Server side of the slider jigsaw CAPTCHA."""
