"""Client side of the slider jigsaw CAPTCHA: drag capture and orchestration."""
