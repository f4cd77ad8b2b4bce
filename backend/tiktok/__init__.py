"""TikTok live analytics worker."""
